"""Routes for uploading chat image attachments."""

from __future__ import annotations

from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile
from pydantic import BaseModel

from ..schemas.chat import Attachment
from ..services.attachments import (
    AttachmentError,
    AttachmentService,
    AttachmentTooLarge,
    UnsupportedAttachmentType,
)
from ..services.blob_store import BlobStoreError

router = APIRouter(prefix="/api/uploads", tags=["uploads"])


def get_attachment_service(request: Request) -> AttachmentService:
    service = getattr(request.app.state, "attachment_service", None)
    if service is None:
        raise HTTPException(status_code=500, detail="Attachment service unavailable")
    return service


class AttachmentUploadResponse(BaseModel):
    attachment: Attachment


@router.post("", response_model=AttachmentUploadResponse, status_code=201)
async def upload_attachment(
    service: AttachmentService = Depends(get_attachment_service),
    file: UploadFile = File(...),
) -> AttachmentUploadResponse:
    if not service.is_available():
        raise HTTPException(
            status_code=503, detail="Image storage is not configured"
        )
    try:
        attachment = await service.save_upload(file)
    except UnsupportedAttachmentType as exc:
        raise HTTPException(status_code=415, detail=f"Unsupported attachment type: {exc}") from exc
    except AttachmentTooLarge as exc:
        raise HTTPException(status_code=413, detail=str(exc)) from exc
    except AttachmentError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except BlobStoreError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return AttachmentUploadResponse(attachment=attachment)


__all__ = ["get_attachment_service", "router"]
