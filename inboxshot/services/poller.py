from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from inboxshot.constants import (
    APPEARANCE_GRACE_ATTEMPTS,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_WAIT_SECONDS,
    PROGRESS_EVERY_ATTEMPTS,
    REQUEST_TIMEOUT_FACTOR,
    SCREENSHOT_GRACE_ATTEMPTS,
)
from inboxshot.schemas import (
    COMPLETE_NO_ARTIFACT,
    PENDING,
    ClientOutcome,
    ClientReport,
    Complete,
    CompleteNoArtifact,
    Failed,
    Job,
    Pending,
    ReportedStatus,
    StatusSnapshot,
    StopReason,
    is_settled,
)
from inboxshot.services.providers import PreviewProvider

LOGGER = logging.getLogger("inboxshot.poller")

NEVER_APPEARED = "never-appeared"
NO_SCREENSHOT = "no-screenshot"


@dataclass
class ConvergenceCheck:
    """Booleans feeding the termination rule for one attempt."""

    snapshot_empty: bool
    all_finished: bool
    all_requested_appeared: bool
    waited_long_enough: bool
    all_complete_have_urls: bool
    tried_enough_for_screenshots: bool
    missing_urls: int = 0

    @property
    def should_stop(self) -> bool:
        if self.snapshot_empty:
            return False
        if not self.all_finished:
            return False
        if not self.all_requested_appeared and not self.waited_long_enough:
            return False
        return self.all_complete_have_urls or self.tried_enough_for_screenshots


@dataclass
class PollingSession:
    job: Job
    outcomes: Dict[str, ClientOutcome] = field(default_factory=dict)
    last_reports: Dict[str, ClientReport] = field(default_factory=dict)
    attempt: int = 0
    stop_reason: Optional[StopReason] = None

    def __post_init__(self) -> None:
        for client_id in self.job.requested_clients:
            self.outcomes.setdefault(client_id, PENDING)

    @property
    def clients(self) -> List[str]:
        """Clients under watch: the requested ones, or whatever the backend reported."""
        if self.job.requested_clients:
            return list(self.job.requested_clients)
        return list(self.outcomes.keys())

    def seen(self, client_id: str) -> bool:
        return client_id in self.last_reports

    def captured(self) -> Dict[str, str]:
        return {
            client_id: outcome.url
            for client_id, outcome in self.outcomes.items()
            if isinstance(outcome, Complete)
        }

    def apply(self, snapshot: StatusSnapshot) -> None:
        """Move outcomes forward from one snapshot; settled outcomes are never touched."""
        if not self.job.requested_clients:
            for client_id in snapshot:
                self.outcomes.setdefault(client_id, PENDING)

        for client_id in self.clients:
            report = snapshot.get(client_id)
            if report is None:
                LOGGER.debug("%s - not ready yet", client_id)
                continue
            self.last_reports[client_id] = report
            current = self.outcomes.get(client_id, PENDING)
            if is_settled(current):
                continue

            if report.status is ReportedStatus.complete:
                if report.artifact_url:
                    self.outcomes[client_id] = Complete(report.artifact_url)
                    LOGGER.info("Captured %s", client_id)
                else:
                    self.outcomes[client_id] = COMPLETE_NO_ARTIFACT
                    LOGGER.debug("%s - complete but screenshot not ready", client_id)
            elif report.status.is_failure:
                self.outcomes[client_id] = Failed(report.raw_status or report.status.value)
                LOGGER.warning("%s - %s", client_id, report.raw_status or report.status.value)
            else:
                LOGGER.debug("%s - %s", client_id, report.raw_status or "pending")

    def evaluate(self, snapshot: StatusSnapshot) -> ConvergenceCheck:
        watched = self.clients
        appeared = [client_id for client_id in watched if self.seen(client_id)]
        finished = [client_id for client_id in appeared if self.last_reports[client_id].status.is_terminal]
        complete = [
            client_id
            for client_id in appeared
            if self.last_reports[client_id].status is ReportedStatus.complete
        ]
        with_urls = [client_id for client_id in complete if isinstance(self.outcomes.get(client_id), Complete)]
        return ConvergenceCheck(
            snapshot_empty=not snapshot,
            all_finished=len(finished) == len(appeared),
            all_requested_appeared=len(appeared) == len(watched),
            waited_long_enough=self.attempt >= APPEARANCE_GRACE_ATTEMPTS,
            all_complete_have_urls=len(with_urls) == len(complete),
            tried_enough_for_screenshots=self.attempt >= SCREENSHOT_GRACE_ATTEMPTS,
            missing_urls=len(complete) - len(with_urls),
        )

    def settle(self) -> None:
        """Classify every unsettled client as failed once polling is over."""
        for client_id in self.clients:
            outcome = self.outcomes.get(client_id, PENDING)
            if is_settled(outcome):
                continue
            if isinstance(outcome, CompleteNoArtifact):
                self.outcomes[client_id] = Failed(NO_SCREENSHOT)
            elif not self.seen(client_id):
                self.outcomes[client_id] = Failed(NEVER_APPEARED)
            else:
                last = self.last_reports[client_id].raw_status or "pending"
                self.outcomes[client_id] = Failed(f"timed-out:{last}")


class JobPoller:
    """Poll a provider until the per-client picture is complete enough to stop.

    The loop makes at most ``max_attempts`` status calls and sleeps
    ``wait_seconds`` between them. A run stops early once every client that
    has appeared is terminal, every requested client has appeared (or ten
    attempts have passed) and every completed client has a screenshot URL (or
    fifteen attempts have passed). Running out of attempts is not an error.
    """

    def __init__(
        self,
        provider: PreviewProvider,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        wait_seconds: float = DEFAULT_WAIT_SECONDS,
        debug: bool = False,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if wait_seconds < 0:
            raise ValueError("wait_seconds must not be negative")
        self._provider = provider
        self._max_attempts = max_attempts
        self._wait_seconds = wait_seconds
        self._debug = debug
        self._sleep = sleep

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    @property
    def wait_seconds(self) -> float:
        return self._wait_seconds

    def _request_timeout(self) -> Optional[float]:
        if self._wait_seconds <= 0:
            return None
        return self._wait_seconds * REQUEST_TIMEOUT_FACTOR

    def poll(self, job: Job) -> PollingSession:
        session = PollingSession(job=job)
        LOGGER.info(
            "Gathering %s screenshot(s) for job %s; checking every %ss (up to %s times)",
            len(job.requested_clients),
            job.job_id,
            self._wait_seconds,
            self._max_attempts,
        )

        for attempt in range(1, self._max_attempts + 1):
            session.attempt = attempt
            snapshot = self._provider.fetch_status(job.job_id, timeout=self._request_timeout())

            if snapshot is None:
                LOGGER.debug("Attempt %s/%s: no usable response", attempt, self._max_attempts)
                self._wait(attempt)
                continue

            session.apply(snapshot)
            check = session.evaluate(snapshot)
            if check.should_stop:
                session.stop_reason = StopReason.converged
                LOGGER.info("Finished collecting available screenshots after %s attempt(s)", attempt)
                break

            if check.all_finished and check.missing_urls and self._debug:
                LOGGER.debug("Waiting for %s screenshot URL(s)", check.missing_urls)
            self._report_progress(session)
            self._wait(attempt)
        else:
            session.stop_reason = StopReason.exhausted
            LOGGER.warning("Stopped polling job %s after %s attempt(s)", job.job_id, self._max_attempts)

        session.settle()
        return session

    def _wait(self, attempt: int) -> None:
        if attempt < self._max_attempts:
            self._sleep(self._wait_seconds)

    def _report_progress(self, session: PollingSession) -> None:
        if session.attempt % PROGRESS_EVERY_ATTEMPTS != 0 and not self._debug:
            return
        LOGGER.info("Progress: %s/%s captured", len(session.captured()), len(session.clients))
        if not self._debug:
            return
        pending = [
            client_id
            for client_id in session.clients
            if not session.seen(client_id) or not session.last_reports[client_id].status.is_terminal
        ]
        missing = [
            client_id
            for client_id in session.clients
            if isinstance(session.outcomes.get(client_id), (Pending, CompleteNoArtifact))
            and session.seen(client_id)
            and session.last_reports[client_id].status is ReportedStatus.complete
        ]
        if pending:
            LOGGER.debug("Pending: %s", ", ".join(pending))
        if missing:
            LOGGER.debug("Complete but URL missing: %s", ", ".join(missing))
