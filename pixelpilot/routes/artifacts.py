from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import FileResponse

from pixelpilot.services.artifacts import ArtifactStore, get_artifact_store

router = APIRouter(tags=["artifacts"])

ArtifactsDep = Depends(get_artifact_store)


@router.get("/artifacts/{artifact_path:path}")
async def read_artifact(artifact_path: str, store: ArtifactStore = ArtifactsDep) -> FileResponse:
    """Serve engine output (HTML report, bitmaps, uploads) from the data root."""
    root = store.root.resolve()
    target = (root / artifact_path).resolve()

    if target != root and root not in target.parents:
        raise HTTPException(status_code=404, detail="Artifact not found")
    if not target.is_file():
        raise HTTPException(status_code=404, detail="Artifact not found")

    return FileResponse(path=target)
