from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Union

import pytest

from inboxshot.errors import AuthenticationError
from inboxshot.schemas import (
    Complete,
    CompleteNoArtifact,
    Failed,
    Job,
    Pending,
    StatusSnapshot,
    StopReason,
)
from inboxshot.services.poller import NEVER_APPEARED, NO_SCREENSHOT, JobPoller, PollingSession
from inboxshot.services.providers import EmailOnAcidProvider, PreviewProvider

Step = Union[None, Exception, Dict[str, Dict[str, object]]]

PROCESSING = {"status": "Processing"}
FAILED = {"status": "Failed"}
BOUNCED = {"status": "Bounced"}
COMPLETE_NO_URL = {"status": "Complete"}


def complete(url: str) -> Dict[str, object]:
    return {"status": "Complete", "screenshots": {"default": url}}


class ScriptedProvider(PreviewProvider):
    """Replays one raw results payload per attempt; the last step repeats forever."""

    name = "scripted"

    def __init__(self, script: Sequence[Step]) -> None:
        self._script = list(script)
        self.calls = 0
        self.timeouts: List[Optional[float]] = []

    def fetch_status(self, job_id: str, timeout: Optional[float] = None) -> Optional[StatusSnapshot]:
        self.calls += 1
        self.timeouts.append(timeout)
        step = self._script[min(self.calls, len(self._script)) - 1]
        if isinstance(step, Exception):
            raise step
        if step is None:
            return None
        return EmailOnAcidProvider.parse_results(step)


class SleepRecorder:
    def __init__(self) -> None:
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def _job(*clients: str) -> Job:
    return Job(job_id="job-1", requested_clients=tuple(clients), submitted_at="2024-01-01T00:00:00+00:00")


def _poller(provider: PreviewProvider, sleep: SleepRecorder, **kwargs: object) -> JobPoller:
    kwargs.setdefault("max_attempts", 60)
    kwargs.setdefault("wait_seconds", 10)
    return JobPoller(provider, sleep=sleep, **kwargs)  # type: ignore[arg-type]


@pytest.mark.unit
def test_terminates_as_soon_as_all_clients_have_urls() -> None:
    provider = ScriptedProvider(
        [
            {},
            {"a": PROCESSING, "b": PROCESSING},
            {"a": complete("https://img/a.png"), "b": complete("https://img/b.png")},
        ]
    )
    sleep = SleepRecorder()

    session = _poller(provider, sleep).poll(_job("a", "b"))

    assert session.attempt == 3
    assert provider.calls == 3
    assert session.stop_reason is StopReason.converged
    assert session.outcomes == {"a": Complete("https://img/a.png"), "b": Complete("https://img/b.png")}
    assert sleep.calls == [10, 10]


@pytest.mark.unit
def test_permanently_empty_snapshots_stop_at_budget() -> None:
    provider = ScriptedProvider([{}])
    sleep = SleepRecorder()

    session = _poller(provider, sleep, max_attempts=7).poll(_job("a"))

    assert provider.calls == 7
    assert session.attempt == 7
    assert session.stop_reason is StopReason.exhausted
    assert len(sleep.calls) == 6
    assert session.outcomes["a"] == Failed(NEVER_APPEARED)


@pytest.mark.unit
def test_soft_failures_do_not_touch_outcomes() -> None:
    provider = ScriptedProvider([None, None, {"a": complete("https://img/a.png")}])
    sleep = SleepRecorder()

    session = _poller(provider, sleep).poll(_job("a"))

    assert session.attempt == 3
    assert session.stop_reason is StopReason.converged
    assert session.outcomes["a"] == Complete("https://img/a.png")
    assert sleep.calls == [10, 10]


@pytest.mark.unit
def test_partial_success_waits_for_grace_floor_then_stops() -> None:
    provider = ScriptedProvider([{"a": complete("https://img/a.png"), "b": FAILED}])
    sleep = SleepRecorder()

    session = _poller(provider, sleep).poll(_job("a", "b", "c"))

    assert session.attempt == 10
    assert session.stop_reason is StopReason.converged
    assert session.outcomes["a"] == Complete("https://img/a.png")
    assert session.outcomes["b"] == Failed("Failed")
    assert session.outcomes["c"] == Failed(NEVER_APPEARED)
    assert session.captured() == {"a": "https://img/a.png"}


@pytest.mark.unit
def test_late_client_that_is_still_processing_keeps_the_loop_alive() -> None:
    early = {"a": complete("https://img/a.png"), "b": BOUNCED}
    script: List[Step] = [{}]
    script += [dict(early, c=PROCESSING) for _ in range(10)]
    script.append(dict(early, c=complete("https://img/c.png")))
    provider = ScriptedProvider(script)
    sleep = SleepRecorder()

    session = _poller(provider, sleep).poll(_job("a", "b", "c"))

    assert session.attempt == 12
    assert session.outcomes["c"] == Complete("https://img/c.png")
    assert session.outcomes["b"] == Failed("Bounced")


@pytest.mark.unit
def test_unseen_client_gets_grace_window_before_stop() -> None:
    early = {"a": complete("https://img/a.png"), "b": FAILED}
    script: List[Step] = [{}]
    script += [dict(early) for _ in range(10)]
    script.append(dict(early, c=complete("https://img/c.png")))
    provider = ScriptedProvider(script)
    sleep = SleepRecorder()

    session = _poller(provider, sleep).poll(_job("a", "b", "c"))

    # All seen clients are terminal from attempt 2 on; absence only counts after attempt 10.
    assert session.attempt == 10
    assert session.outcomes["c"] == Failed(NEVER_APPEARED)


@pytest.mark.unit
def test_complete_without_screenshot_waits_for_screenshot_floor() -> None:
    provider = ScriptedProvider([{"a": COMPLETE_NO_URL}])
    sleep = SleepRecorder()

    session = _poller(provider, sleep).poll(_job("a"))

    assert session.attempt == 15
    assert session.stop_reason is StopReason.converged
    assert session.outcomes["a"] == Failed(NO_SCREENSHOT)


@pytest.mark.unit
def test_screenshot_arriving_late_is_captured() -> None:
    provider = ScriptedProvider(
        [
            {"a": COMPLETE_NO_URL},
            {"a": COMPLETE_NO_URL},
            {"a": complete("https://img/a.png")},
        ]
    )
    sleep = SleepRecorder()

    session = _poller(provider, sleep).poll(_job("a"))

    assert session.attempt == 3
    assert session.outcomes["a"] == Complete("https://img/a.png")


@pytest.mark.unit
def test_settled_outcomes_never_change() -> None:
    provider = ScriptedProvider(
        [
            {"a": complete("https://img/a-1.png"), "b": PROCESSING, "c": BOUNCED},
            {"a": FAILED, "b": PROCESSING, "c": complete("https://img/c.png")},
            {"a": complete("https://img/a-2.png"), "b": PROCESSING, "c": complete("https://img/c.png")},
            {"a": complete("https://img/a-2.png"), "b": complete("https://img/b.png"), "c": BOUNCED},
        ]
    )
    sleep = SleepRecorder()

    session = _poller(provider, sleep).poll(_job("a", "b", "c"))

    assert session.attempt == 4
    assert session.outcomes["a"] == Complete("https://img/a-1.png")
    assert session.outcomes["b"] == Complete("https://img/b.png")
    assert session.outcomes["c"] == Failed("Bounced")


@pytest.mark.unit
def test_same_snapshot_twice_is_a_no_op() -> None:
    session = PollingSession(job=_job("a", "b", "c", "d"))
    snapshot = EmailOnAcidProvider.parse_results(
        {"a": complete("https://img/a.png"), "b": FAILED, "c": COMPLETE_NO_URL}
    )

    session.attempt = 1
    session.apply(snapshot)
    first = dict(session.outcomes)
    session.attempt = 2
    session.apply(snapshot)

    assert session.outcomes == first
    assert isinstance(first["c"], CompleteNoArtifact)
    assert isinstance(first["d"], Pending)


@pytest.mark.unit
def test_authentication_failure_aborts_immediately() -> None:
    provider = ScriptedProvider([{}, AuthenticationError("bad credentials")])
    sleep = SleepRecorder()

    with pytest.raises(AuthenticationError):
        _poller(provider, sleep).poll(_job("a"))

    assert provider.calls == 2
    assert sleep.calls == [10]


@pytest.mark.unit
def test_empty_request_watches_every_reported_client() -> None:
    provider = ScriptedProvider(
        [
            {"x": PROCESSING},
            {"x": complete("https://img/x.png"), "y": FAILED},
        ]
    )
    sleep = SleepRecorder()

    session = _poller(provider, sleep).poll(_job())

    assert session.attempt == 2
    assert session.clients == ["x", "y"]
    assert session.outcomes == {"x": Complete("https://img/x.png"), "y": Failed("Failed")}


@pytest.mark.unit
def test_request_timeout_stays_inside_wait_window() -> None:
    provider = ScriptedProvider([{"a": complete("https://img/a.png")}])
    sleep = SleepRecorder()

    _poller(provider, sleep, wait_seconds=20).poll(_job("a"))

    assert provider.timeouts == [pytest.approx(18.0)]


@pytest.mark.unit
def test_rejects_non_positive_attempt_budget() -> None:
    with pytest.raises(ValueError):
        JobPoller(ScriptedProvider([{}]), max_attempts=0)
