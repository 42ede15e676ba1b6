from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import FileResponse
from starlette.background import BackgroundTask

from app.core.roles import Principal, require_action
from app.schemas.archive import CreateArchiveRequest
from app.services.archive_service import ArchivePackager, get_archive_packager


router = APIRouter(prefix="/zip", tags=["Archives"])


def _packager() -> ArchivePackager:
    return get_archive_packager()


@router.post("/create-zip")
async def create_zip(
    payload: CreateArchiveRequest,
    _principal: Principal = Depends(require_action("archive:create")),
):
    """
    把选中的附件打成 zip（60 秒内有效）。
    """
    filename = await _packager().create(payload.refs())
    return {"success": True, "message": "Zip file created successfully", "filename": filename}


@router.get("/download-zip/{filename}")
async def download_zip(filename: str):
    """
    下载 zip；响应发送完毕后立即删除文件并取消过期定时器。
    """
    packager = _packager()
    path = packager.resolve_download(filename)
    return FileResponse(
        path,
        filename=filename,
        media_type="application/zip",
        background=BackgroundTask(packager.discard, filename),
    )
