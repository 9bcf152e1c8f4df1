"""Documents router: accept one invoice upload and run it through intake.

Thin HTTP layer. Upload validation raises domain exceptions which the app
maps to status codes; processing is delegated to IntakePipelineService.
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, File, UploadFile

from ..config import get_settings
from ..deps import get_intake_pipeline, get_tenant_id
from ..exceptions import FileValidationError, PayloadTooLargeError
from ..models import Document, IntakeResponse
from ..services.orchestration.intake_pipeline import IntakePipelineService
from ..utils.pdf import count_pdf_pages

logger = logging.getLogger(__name__)

router = APIRouter(tags=["documents"])


async def read_upload(file: UploadFile) -> Document:
    """Validate an upload against runtime limits and wrap it as a Document."""
    settings = get_settings()
    mime_type = (file.content_type or "").split(";")[0].strip().lower()
    if mime_type not in settings.ACCEPTED_MIME:
        raise FileValidationError(f"Unsupported MIME type: {file.content_type}")

    data = await file.read()
    if not data:
        raise FileValidationError(f"File {file.filename} is empty")
    if len(data) > settings.max_size_bytes:
        raise PayloadTooLargeError(f"File {file.filename} exceeds size limit")

    page_count = 1
    if mime_type == "application/pdf":
        page_count = count_pdf_pages(data)
        if page_count > settings.MAX_PAGES:
            raise FileValidationError(f"File {file.filename} exceeds page limit")

    return Document(data=data, mime_type=mime_type, page_count=page_count, filename=file.filename or "")


@router.post("/documents", response_model=IntakeResponse)
async def create_document(
    file: UploadFile = File(description="Invoice as PDF or image"),
    tenant_id: str = Depends(get_tenant_id),
    pipeline: IntakePipelineService = Depends(get_intake_pipeline),
) -> IntakeResponse:
    """Extract invoice fields and resolve the vendor for one uploaded file."""
    document = await read_upload(file)
    logger.info(
        "[%s] Received %s (%s, %d bytes, %d pages)",
        tenant_id,
        document.filename,
        document.mime_type,
        len(document.data),
        document.page_count,
    )
    return await pipeline.process_document(document, tenant_id)
