from __future__ import annotations

from typing import List

from fastapi import APIRouter, HTTPException

from inboxshot.schemas import ComparisonReport, PreviewDescriptor
from inboxshot.services.artifacts import ArtifactStore, ArtifactStoreDep
from inboxshot.services.providers import PROVIDERS
from inboxshot.services.sanitize import sanitize

router = APIRouter(prefix="/api", tags=["api"])


def _task_key(task: str) -> str:
    key = sanitize(task)
    if not key:
        raise HTTPException(status_code=400, detail="Task name has no usable characters")
    return key


@router.get("/providers", response_model=List[str])
async def list_providers() -> List[str]:
    return sorted(PROVIDERS.keys())


@router.get("/tasks/{task}/previews", response_model=List[PreviewDescriptor])
async def get_previews(task: str, store: ArtifactStore = ArtifactStoreDep) -> List[PreviewDescriptor]:
    path = store.preview_file(_task_key(task))
    if not path.is_file():
        raise HTTPException(status_code=404, detail="Preview file not found")
    data = store.read_json(path)
    if not isinstance(data, list):
        raise HTTPException(status_code=500, detail="Preview file is malformed")
    return [PreviewDescriptor.model_validate(item) for item in data]


@router.get("/tasks/{task}/archives", response_model=List[str])
async def list_archives(task: str, store: ArtifactStore = ArtifactStoreDep) -> List[str]:
    return [path.name for path in store.list_archives(_task_key(task))]


@router.get("/tasks/{task}/comparison", response_model=ComparisonReport)
async def get_comparison(task: str, store: ArtifactStore = ArtifactStoreDep) -> ComparisonReport:
    path = store.comparison_report_file(_task_key(task))
    if not path.is_file():
        raise HTTPException(status_code=404, detail="Comparison report not found")
    return ComparisonReport.model_validate(store.read_json(path))
