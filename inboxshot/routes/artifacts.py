from __future__ import annotations

from fastapi import APIRouter, HTTPException
from fastapi.responses import FileResponse

from inboxshot.services.artifacts import ArtifactStore, ArtifactStoreDep

router = APIRouter(tags=["artifacts"])


@router.get("/artifacts/{artifact_path:path}")
async def read_artifact(artifact_path: str, store: ArtifactStore = ArtifactStoreDep) -> FileResponse:
    target = store.resolve_public(artifact_path)
    if target is None:
        raise HTTPException(status_code=404, detail="Artifact not found")
    return FileResponse(path=target)
