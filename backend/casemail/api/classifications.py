"""Classification API endpoints — classify a client's emails, preview an import."""

from dataclasses import asdict

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from casemail.api.deps import get_caller, get_processor, to_http_exception
from casemail.exceptions import CasemailError
from casemail.services.processor import ClassificationProcessor
from casemail.services.types import CallerIdentity

router = APIRouter(prefix="/api/classify", tags=["classification"])


class ProcessRequest(BaseModel):
    email_ids: list[str] = Field(..., min_length=1)


class ProcessResult(BaseModel):
    processed: int
    auto_assigned: int
    queued: int
    failed: int


class PreviewRequest(BaseModel):
    case_id: str
    addresses: list[str] = Field(..., min_length=1)


class CaseSummary(BaseModel):
    case_id: str
    email_count: int
    auto_classified: int
    needs_review: int


class PreviewResponse(BaseModel):
    total_emails: int
    classifications: list[dict]
    by_case: list[CaseSummary]
    needs_review: int
    unclassified: int
    failed_email_ids: list[str]
    processing_time_ms: int


@router.post("/clients/{client_id}", response_model=ProcessResult)
async def classify_client_emails(
    client_id: str,
    request: ProcessRequest,
    caller: CallerIdentity = Depends(get_caller),
    processor: ClassificationProcessor = Depends(get_processor),
):
    """Classify emails against the client's active cases; assign or queue each one."""
    try:
        counts = await processor.process_emails(client_id, request.email_ids, caller)
    except CasemailError as e:
        raise to_http_exception(e) from e
    return ProcessResult(**counts)


@router.post("/preview", response_model=PreviewResponse)
async def preview_import(
    request: PreviewRequest,
    caller: CallerIdentity = Depends(get_caller),
    processor: ClassificationProcessor = Depends(get_processor),
):
    """Show how the emails of the given contacts would be split across the client's cases."""
    try:
        batch = await processor.preview_for_case(request.case_id, request.addresses, caller)
    except CasemailError as e:
        raise to_http_exception(e) from e

    return PreviewResponse(
        total_emails=batch.total_emails,
        classifications=[c.to_dict() for c in batch.classifications],
        by_case=[CaseSummary(**asdict(s)) for s in batch.by_case],
        needs_review=batch.needs_review,
        unclassified=batch.unclassified,
        failed_email_ids=batch.failed_email_ids,
        processing_time_ms=batch.processing_time_ms,
    )
