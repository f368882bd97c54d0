from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import FileResponse

from questions_hub.importing import LocalImportStorage
from questions_hub.importing.storage import is_plain_file_name

from api.dependencies import get_storage

router = APIRouter(prefix="/media", tags=["media"])


@router.get("/{file_name}")
def get_media(file_name: str, storage: LocalImportStorage = Depends(get_storage)):
    if not is_plain_file_name(file_name):
        raise HTTPException(status_code=404, detail=f"Media not found: {file_name}")
    path = storage.paths.handouts_dir() / file_name
    if not path.is_file():
        raise HTTPException(status_code=404, detail=f"Media not found: {file_name}")
    return FileResponse(path)
