from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import pytest

from inboxshot.errors import (
    AuthenticationError,
    ConfigurationError,
    PreviewGenerationError,
    SubmissionError,
)
from inboxshot.schemas import StatusSnapshot, StopReason
from inboxshot.services.coordinator import PreviewCoordinator
from inboxshot.services.providers import EmailOnAcidProvider, PreviewProvider
from inboxshot.settings import Settings

MOMENT = datetime(2024, 5, 1, 9, 30, 0, tzinfo=timezone.utc)


class StubProvider(PreviewProvider):
    name = "stub"

    def __init__(
        self,
        results: Sequence[Dict[str, Dict[str, object]]],
        *,
        job_id: str = "job-42",
        submit_error: Optional[Exception] = None,
        fetch_error: Optional[Exception] = None,
    ) -> None:
        self._results = list(results)
        self._job_id = job_id
        self._submit_error = submit_error
        self._fetch_error = fetch_error
        self.submissions: List[Tuple[str, str, Tuple[str, ...]]] = []
        self.polled: List[str] = []

    def submit_job(self, content: str, subject: str, clients: Sequence[str]) -> str:
        if self._submit_error is not None:
            raise self._submit_error
        self.submissions.append((content, subject, tuple(clients)))
        return self._job_id

    def fetch_status(self, job_id: str, timeout: Optional[float] = None) -> Optional[StatusSnapshot]:
        if self._fetch_error is not None:
            raise self._fetch_error
        self.polled.append(job_id)
        step = self._results[min(len(self.polled), len(self._results)) - 1]
        return EmailOnAcidProvider.parse_results(step)


def _settings(root: Path, **overrides: object) -> Settings:
    values: Dict[str, object] = {
        "task_name": "Spring Sale 2024",
        "service": "emailonacid",
        "api_key": "key",
        "password": "secret",
        "clients": ["outlook16", "gmail", "iphone13"],
        "max_attempts": 20,
        "wait_seconds": 5,
        "root": root,
    }
    values.update(overrides)
    return Settings(**values)  # type: ignore[arg-type]


def _write_email(root: Path, key: str = "spring-sale-2024") -> Path:
    path = root / "emails" / f"{key}.html"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("<html><body>Hello</body></html>", encoding="utf-8")
    return path


def _coordinator(settings: Settings, provider: PreviewProvider, sleeps: List[float]) -> PreviewCoordinator:
    return PreviewCoordinator(settings, provider=provider, sleep=sleeps.append, clock=lambda: MOMENT)


@pytest.mark.integration
def test_run_submits_polls_and_writes_partial_results(tmp_path: Path) -> None:
    _write_email(tmp_path)
    provider = StubProvider(
        [
            {
                "outlook16": {"status": "Complete", "screenshots": {"default": "https://img/o.png"}},
                "gmail": {"status": "Bounced"},
            },
        ]
    )
    sleeps: List[float] = []

    result = _coordinator(_settings(tmp_path), provider, sleeps).run()

    assert result.task_key == "spring-sale-2024"
    content, subject, clients = provider.submissions[0]
    assert content.startswith("<html>")
    assert subject.startswith("Spring Sale 2024 - Preview - ")
    assert clients == ("outlook16", "gmail", "iphone13")
    assert result.session.attempt == 10
    assert result.session.stop_reason is StopReason.converged
    assert len(sleeps) == 9

    preview_file = tmp_path / "temp" / "generated-preview-urls-spring-sale-2024.json"
    assert result.files.preview_file == preview_file
    assert json.loads(preview_file.read_text(encoding="utf-8")) == [
        {"name": "Outlook16 Preview", "url": "https://img/o.png", "client": "outlook16"}
    ]
    audit = json.loads(result.files.audit_file.read_text(encoding="utf-8"))
    assert {entry["client"]: entry["reason"] for entry in audit["clients"]} == {
        "outlook16": None,
        "gmail": "Bounced",
        "iphone13": "never-appeared",
    }
    assert audit["summary"] == {"requested": 3, "captured": 1, "failed": 1, "never_appeared": 1}


@pytest.mark.integration
def test_existing_job_id_skips_upload(tmp_path: Path) -> None:
    provider = StubProvider(
        [{"outlook16": {"status": "Complete", "screenshots": {"default": "https://img/o.png"}}}]
    )

    result = _coordinator(
        _settings(tmp_path, clients=["outlook16"], existing_job_id="existing-7"), provider, []
    ).run()

    assert provider.submissions == []
    assert provider.polled == ["existing-7"]
    assert result.job.reused
    assert [preview.client for preview in result.previews] == ["outlook16"]


@pytest.mark.integration
def test_exhausted_budget_still_writes_preview_file(tmp_path: Path) -> None:
    _write_email(tmp_path)
    provider = StubProvider([{}])

    result = _coordinator(_settings(tmp_path, max_attempts=3), provider, []).run()

    assert result.session.stop_reason is StopReason.exhausted
    assert result.previews == []
    assert json.loads(result.files.preview_file.read_text(encoding="utf-8")) == []
    assert result.audit.summary.never_appeared == 3


@pytest.mark.integration
def test_missing_email_file_fails_before_network(tmp_path: Path) -> None:
    provider = StubProvider([{}])

    with pytest.raises(PreviewGenerationError) as excinfo:
        _coordinator(_settings(tmp_path), provider, []).run()

    assert isinstance(excinfo.value.__cause__, ConfigurationError)
    assert provider.submissions == []
    assert provider.polled == []
    assert not (tmp_path / "temp").exists()


@pytest.mark.integration
def test_unusable_task_name_is_configuration_error(tmp_path: Path) -> None:
    provider = StubProvider([{}])

    with pytest.raises(PreviewGenerationError) as excinfo:
        _coordinator(_settings(tmp_path, task_name="***"), provider, []).run()

    assert isinstance(excinfo.value.__cause__, ConfigurationError)
    assert provider.polled == []


@pytest.mark.integration
@pytest.mark.parametrize(
    "kwargs, cause",
    [
        ({"submit_error": SubmissionError("rejected")}, SubmissionError),
        ({"fetch_error": AuthenticationError("bad credentials")}, AuthenticationError),
    ],
)
def test_fatal_provider_errors_abort_run(tmp_path: Path, kwargs: Dict[str, Exception], cause: type) -> None:
    _write_email(tmp_path)
    provider = StubProvider([{}], **kwargs)

    with pytest.raises(PreviewGenerationError) as excinfo:
        _coordinator(_settings(tmp_path), provider, []).run()

    assert isinstance(excinfo.value.__cause__, cause)
    assert not (tmp_path / "temp" / "generated-preview-urls-spring-sale-2024.json").exists()


@pytest.mark.unit
def test_unknown_service_is_rejected_without_injected_provider(tmp_path: Path) -> None:
    _write_email(tmp_path)
    coordinator = PreviewCoordinator(_settings(tmp_path, service="litmus"), sleep=lambda _: None)

    with pytest.raises(PreviewGenerationError) as excinfo:
        coordinator.run()

    assert isinstance(excinfo.value.__cause__, ConfigurationError)


@pytest.mark.integration
def test_undecodable_email_file_is_configuration_error(tmp_path: Path) -> None:
    path = _write_email(tmp_path)
    path.write_bytes(b"<html>\xff\xfe\xfa</html>")
    provider = StubProvider([{}])

    with pytest.raises(PreviewGenerationError) as excinfo:
        _coordinator(_settings(tmp_path), provider, []).run()

    assert isinstance(excinfo.value.__cause__, ConfigurationError)
    assert provider.submissions == []


@pytest.mark.integration
def test_unwritable_output_folder_is_preview_generation_error(tmp_path: Path) -> None:
    _write_email(tmp_path)
    (tmp_path / "temp").write_text("not a folder", encoding="utf-8")
    provider = StubProvider(
        [{"outlook16": {"status": "Complete", "screenshots": {"default": "https://img/o.png"}}}]
    )

    with pytest.raises(PreviewGenerationError) as excinfo:
        _coordinator(_settings(tmp_path, clients=["outlook16"]), provider, []).run()

    assert isinstance(excinfo.value.__cause__, OSError)
