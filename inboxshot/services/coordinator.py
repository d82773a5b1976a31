from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional

from inboxshot.errors import (
    AuthenticationError,
    ConfigurationError,
    PreviewGenerationError,
    SubmissionError,
)
from inboxshot.schemas import AuditRecord, Job, PreviewDescriptor
from inboxshot.services.artifacts import ArtifactStore
from inboxshot.services.materializer import PreviewWriter, WrittenPreviews, materialize
from inboxshot.services.poller import NEVER_APPEARED, JobPoller, PollingSession
from inboxshot.services.providers import PreviewProvider, get_provider
from inboxshot.services.sanitize import sanitize
from inboxshot.settings import Settings

LOGGER = logging.getLogger("inboxshot.coordinator")


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass
class PreviewRunResult:
    task_key: str
    job: Job
    session: PollingSession
    previews: List[PreviewDescriptor]
    audit: AuditRecord
    files: WrittenPreviews


class PreviewCoordinator:
    """Submit (or reuse) a rendering job, poll it to convergence and persist the previews."""

    def __init__(
        self,
        settings: Settings,
        *,
        provider: Optional[PreviewProvider] = None,
        store: Optional[ArtifactStore] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._settings = settings
        self._provider = provider
        self._store = store or ArtifactStore(root=settings.root)
        self._sleep = sleep
        self._clock = clock

    @property
    def store(self) -> ArtifactStore:
        return self._store

    def task_key(self) -> str:
        key = sanitize(self._settings.task_name)
        if not key:
            raise ConfigurationError(
                f"Task name {self._settings.task_name!r} has no usable characters for file naming."
            )
        return key

    def _resolve_provider(self) -> PreviewProvider:
        if self._provider is None:
            self._provider = get_provider(
                self._settings.service,
                self._settings.api_key,
                self._settings.password,
            )
        return self._provider

    def _subject(self, now: datetime) -> str:
        return f"{self._settings.task_name} - Preview - {now.strftime('%Y-%m-%d %H:%M:%S')}"

    def _obtain_job(self, provider: PreviewProvider, task_key: str, now: datetime) -> Job:
        clients = tuple(self._settings.clients)
        existing = self._settings.existing_job_id
        if existing:
            LOGGER.info("Mode: using existing test (ID: %s)", existing)
            return Job(job_id=existing, requested_clients=clients, submitted_at=now.isoformat(), reused=True)

        email_file = self._store.email_file(task_key)
        if not email_file.is_file():
            raise ConfigurationError(
                f"Could not find email HTML file at {email_file}. Place it there or set EXISTING_EOA_TEST_ID."
            )
        try:
            content = email_file.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise ConfigurationError(f"Could not read email HTML file {email_file}: {exc}") from exc
        LOGGER.info("Mode: creating new test from %s", email_file)
        job_id = provider.submit_job(content, self._subject(now), clients)
        return Job(job_id=job_id, requested_clients=clients, submitted_at=now.isoformat())

    def run(self) -> PreviewRunResult:
        settings = self._settings
        LOGGER.info("Preview generation start: task %r", settings.task_name)
        try:
            task_key = self.task_key()
            provider = self._resolve_provider()
            now = self._clock()
            job = self._obtain_job(provider, task_key, now)

            poller = JobPoller(
                provider,
                max_attempts=settings.max_attempts,
                wait_seconds=settings.wait_seconds,
                debug=settings.debug,
                sleep=self._sleep,
            )
            session = poller.poll(job)
        except (ConfigurationError, SubmissionError, AuthenticationError) as exc:
            LOGGER.error("Setup error: %s", exc)
            raise PreviewGenerationError(f"Preview generation failed: {exc}") from exc

        previews, audit = materialize(session, task_key, provider.name, generated_at=self._clock())
        try:
            files = PreviewWriter(self._store, clock=self._clock).write(task_key, previews, audit)
        except OSError as exc:
            LOGGER.error("Could not write preview files: %s", exc)
            raise PreviewGenerationError(f"Preview generation failed: {exc}") from exc
        self._log_summary(audit)
        LOGGER.info("Preview generation finished")
        return PreviewRunResult(
            task_key=task_key,
            job=job,
            session=session,
            previews=previews,
            audit=audit,
            files=files,
        )

    def _log_summary(self, audit: AuditRecord) -> None:
        summary = audit.summary
        if summary.captured == summary.requested:
            LOGGER.info("All %s screenshot(s) ready", summary.captured)
            return
        LOGGER.warning("Captured %s/%s", summary.captured, summary.requested)
        failed = [entry.client for entry in audit.clients if entry.reason and entry.reason != NEVER_APPEARED]
        never = [entry.client for entry in audit.clients if entry.reason == NEVER_APPEARED]
        if failed:
            LOGGER.warning("Failed/Bounced: %s", ", ".join(failed))
        if never:
            LOGGER.warning("Never appeared (possibly unsupported): %s", ", ".join(never))
