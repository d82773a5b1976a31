from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Optional

from fastapi import Depends

from inboxshot.constants import (
    ARCHIVE_DIRNAME,
    BASELINES_DIRNAME,
    EMAILS_DIRNAME,
    RESULTS_DIRNAME,
    TEMP_DIRNAME,
)

PREVIEW_PREFIX = "generated-preview-urls"
AUDIT_PREFIX = "preview-audit"
COMPARISON_REPORT = "comparison-report.json"

# Only these top-level folders are ever served over HTTP.
PUBLIC_DIRS = (TEMP_DIRNAME, BASELINES_DIRNAME, RESULTS_DIRNAME)


def archive_timestamp(moment: Optional[datetime] = None) -> str:
    """UTC timestamp safe for file names, e.g. ``2024-05-01-13-45-10-123Z``."""
    dt = moment or datetime.now(tz=timezone.utc)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return f"{dt.strftime('%Y-%m-%d-%H-%M-%S')}-{dt.microsecond // 1000:03d}Z"


class ArtifactStore:
    """Manage on-disk locations for preview lists, archives, baselines and comparison output."""

    def __init__(self, root: Optional[Path] = None) -> None:
        resolved_root = root or Path.cwd()
        self._root = resolved_root.resolve()

    @property
    def root(self) -> Path:
        return self._root

    def _ensure_dir(self, path: Path) -> Path:
        path.mkdir(parents=True, exist_ok=True)
        return path

    def temp_dir(self) -> Path:
        return self._ensure_dir(self._root / TEMP_DIRNAME)

    def archive_dir(self) -> Path:
        return self._ensure_dir(self.temp_dir() / ARCHIVE_DIRNAME)

    def baseline_dir(self, task_key: str) -> Path:
        return self._ensure_dir(self._root / BASELINES_DIRNAME / task_key)

    def results_dir(self, task_key: str) -> Path:
        return self._ensure_dir(self._root / RESULTS_DIRNAME / task_key)

    def email_file(self, task_key: str) -> Path:
        return self._root / EMAILS_DIRNAME / f"{task_key}.html"

    def preview_file(self, task_key: str) -> Path:
        return self._root / TEMP_DIRNAME / f"{PREVIEW_PREFIX}-{task_key}.json"

    def archive_file(self, task_key: str, stamp: str) -> Path:
        return self.archive_dir() / f"{PREVIEW_PREFIX}-{task_key}-{stamp}.json"

    def audit_file(self, task_key: str, stamp: str) -> Path:
        return self.archive_dir() / f"{AUDIT_PREFIX}-{task_key}-{stamp}.json"

    def comparison_report_file(self, task_key: str) -> Path:
        return self._root / RESULTS_DIRNAME / task_key / COMPARISON_REPORT

    def list_archives(self, task_key: str) -> List[Path]:
        """Archived preview lists for a task, newest first."""
        folder = self._root / TEMP_DIRNAME / ARCHIVE_DIRNAME
        if not folder.exists():
            return []
        prefix = f"{PREVIEW_PREFIX}-{task_key}-"
        matches = [
            child
            for child in folder.iterdir()
            if child.is_file() and child.name.startswith(prefix) and child.suffix == ".json"
        ]
        return sorted(matches, key=lambda path: path.name, reverse=True)

    def write_json(self, path: Path, payload: Any) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(f".{path.name}.tmp")
        tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        tmp_path.replace(path)
        return path

    def read_json(self, path: Path) -> Any:
        with path.open("r", encoding="utf-8") as handle:
            return json.load(handle)

    def relative(self, path: Path) -> str:
        cleaned = path.resolve()
        return str(cleaned.relative_to(self._root)).replace("\\", "/")

    def resolve_public(self, relative_path: str) -> Optional[Path]:
        """Map a URL path onto a file inside one of the public folders, or ``None``."""
        target = (self._root / relative_path).resolve()
        try:
            parts = target.relative_to(self._root).parts
        except ValueError:
            return None
        if not parts or parts[0] not in PUBLIC_DIRS:
            return None
        if not target.is_file():
            return None
        return target


_artifact_store: Optional[ArtifactStore] = None


def get_artifact_store() -> ArtifactStore:
    global _artifact_store
    if _artifact_store is None:
        _artifact_store = ArtifactStore()
    return _artifact_store


ArtifactStoreDep = Depends(get_artifact_store)
