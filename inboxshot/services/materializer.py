from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from inboxshot.schemas import (
    AuditRecord,
    AuditSummary,
    ClientAudit,
    Complete,
    Failed,
    PreviewDescriptor,
    StopReason,
)
from inboxshot.services.artifacts import ArtifactStore, archive_timestamp
from inboxshot.services.poller import NEVER_APPEARED, PollingSession

LOGGER = logging.getLogger("inboxshot.materializer")

_WORD_START = re.compile(r"\b\w")


def preview_label(client_id: str) -> str:
    """``outlook16_win`` -> ``Outlook16 Win Preview``."""
    spaced = client_id.replace("_", " ")
    return f"{_WORD_START.sub(lambda match: match.group(0).upper(), spaced)} Preview"


def materialize(
    session: PollingSession,
    task_key: str,
    provider: str,
    *,
    generated_at: Optional[datetime] = None,
) -> Tuple[List[PreviewDescriptor], AuditRecord]:
    """Split a finished session into the preview list and a full audit record."""
    previews: List[PreviewDescriptor] = []
    entries: List[ClientAudit] = []
    summary = AuditSummary(requested=len(session.clients))

    for client_id in session.clients:
        outcome = session.outcomes.get(client_id)
        report = session.last_reports.get(client_id)
        entry = ClientAudit(
            client=client_id,
            state=outcome.state,
            last_status=report.raw_status if report else None,
        )
        if isinstance(outcome, Complete):
            previews.append(PreviewDescriptor(name=preview_label(client_id), url=outcome.url, client=client_id))
            entry.url = outcome.url
            summary.captured += 1
        elif isinstance(outcome, Failed):
            entry.reason = outcome.reason
            if outcome.reason == NEVER_APPEARED:
                summary.never_appeared += 1
            else:
                summary.failed += 1
        entries.append(entry)

    moment = generated_at or datetime.now(tz=timezone.utc)
    audit = AuditRecord(
        task=task_key,
        job_id=session.job.job_id,
        provider=provider,
        attempts=session.attempt,
        stop_reason=session.stop_reason or StopReason.exhausted,
        generated_at=moment.isoformat(),
        clients=entries,
        summary=summary,
    )
    return previews, audit


@dataclass
class WrittenPreviews:
    preview_file: Path
    archive_file: Path
    audit_file: Path


class PreviewWriter:
    """Persist the preview list and its timestamped archive copies."""

    def __init__(
        self,
        store: ArtifactStore,
        clock: Callable[[], datetime] = lambda: datetime.now(tz=timezone.utc),
    ) -> None:
        self._store = store
        self._clock = clock

    def write(self, task_key: str, previews: List[PreviewDescriptor], audit: AuditRecord) -> WrittenPreviews:
        stamp = archive_timestamp(self._clock())
        payload = [preview.model_dump() for preview in previews]

        preview_file = self._store.write_json(self._store.preview_file(task_key), payload)
        LOGGER.info("Saved preview list: %s", preview_file)

        archive_file = self._store.archive_file(task_key, stamp)
        self._store.write_json(archive_file, payload)
        audit_file = self._store.audit_file(task_key, stamp)
        self._store.write_json(audit_file, audit.model_dump(mode="json"))
        LOGGER.info("Archived: %s", archive_file)
        return WrittenPreviews(preview_file=preview_file, archive_file=archive_file, audit_file=audit_file)

    def read(self, task_key: str) -> List[PreviewDescriptor]:
        path = self._store.preview_file(task_key)
        data = self._store.read_json(path)
        if not isinstance(data, list):
            raise ValueError(f"Preview file {path} does not contain a list")
        return [PreviewDescriptor.model_validate(item) for item in data]
