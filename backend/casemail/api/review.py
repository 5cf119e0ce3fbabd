"""Review queue API endpoints — pending classifications and manual corrections of imported emails."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from casemail.api.deps import get_caller, get_review_queue, to_http_exception
from casemail.exceptions import CasemailError
from casemail.services.review_queue import QueueFilter, ReviewQueueManager
from casemail.services.types import CallerIdentity, ReviewReason

router = APIRouter(prefix="/api/review", tags=["review"])


class EmailBrief(BaseModel):
    id: str
    subject: Optional[str]
    from_address: Optional[str]
    from_name: Optional[str]
    received_at: Optional[datetime]

    class Config:
        from_attributes = True


class PendingItem(BaseModel):
    id: str
    email_id: str
    reason: str
    review_note: Optional[str]
    suggested_cases: list = []
    detected_references: list = []
    created_at: datetime
    email: Optional[EmailBrief] = None

    class Config:
        from_attributes = True


class PendingPageResponse(BaseModel):
    items: list[PendingItem]
    total: int
    has_more: bool


class LogEntry(BaseModel):
    id: str
    email_id: str
    action: str
    from_case_id: Optional[str]
    to_case_id: Optional[str]
    match_type: Optional[str]
    was_automatic: bool
    confidence: Optional[float]
    correction_reason: Optional[str]
    performed_by: Optional[str]
    performed_at: datetime

    class Config:
        from_attributes = True


class AssignRequest(BaseModel):
    case_id: str
    reason: Optional[str] = None


class BulkAssignRequest(BaseModel):
    pending_ids: list[str] = Field(..., min_length=1)
    case_id: str
    reason: Optional[str] = None


class BulkAssignResponse(BaseModel):
    assigned_count: int
    errors: list[str]


class MoveRequest(BaseModel):
    case_id: str
    reason: Optional[str] = None


class DismissRequest(BaseModel):
    reason: Optional[str] = None


class StatsResponse(BaseModel):
    auto_classified: int
    manually_reviewed: int
    moved_after_import: int
    pending_review: int
    ai_accuracy: Optional[float]


@router.get("/queue", response_model=PendingPageResponse)
async def list_queue(
    client_id: Optional[str] = None,
    reason: Optional[ReviewReason] = None,
    created_after: Optional[datetime] = None,
    created_before: Optional[datetime] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    caller: CallerIdentity = Depends(get_caller),
    queue: ReviewQueueManager = Depends(get_review_queue),
):
    """Unresolved classifications of the caller's firm, newest first."""
    page = await queue.list_pending(
        caller,
        QueueFilter(
            client_id=client_id,
            reason=reason,
            created_after=created_after,
            created_before=created_before,
        ),
        limit=limit,
        offset=offset,
    )
    return PendingPageResponse(
        items=[PendingItem.model_validate(p) for p in page.items],
        total=page.total,
        has_more=page.has_more,
    )


@router.get("/count")
async def queue_count(
    caller: CallerIdentity = Depends(get_caller),
    queue: ReviewQueueManager = Depends(get_review_queue),
):
    """Number of unresolved classifications (badge counter)."""
    return {"count": await queue.pending_count(caller)}


@router.get("/stats", response_model=StatsResponse)
async def classification_stats(
    period: str = Query("WEEK", pattern="^(DAY|WEEK|MONTH|QUARTER)$"),
    caller: CallerIdentity = Depends(get_caller),
    queue: ReviewQueueManager = Depends(get_review_queue),
):
    """Auto vs manual classification counts and the share of auto-assignments kept."""
    stats = await queue.classification_stats(caller, period)
    return StatsResponse(
        auto_classified=stats.auto_classified,
        manually_reviewed=stats.manually_reviewed,
        moved_after_import=stats.moved_after_import,
        pending_review=stats.pending_review,
        ai_accuracy=stats.ai_accuracy,
    )


@router.post("/bulk-assign", response_model=BulkAssignResponse)
async def bulk_assign(
    request: BulkAssignRequest,
    caller: CallerIdentity = Depends(get_caller),
    queue: ReviewQueueManager = Depends(get_review_queue),
):
    """Assign several pending emails to one case; per-item failures are reported, not raised."""
    try:
        result = await queue.bulk_assign(request.pending_ids, request.case_id, caller, request.reason)
    except CasemailError as e:
        raise to_http_exception(e) from e
    return BulkAssignResponse(assigned_count=result.assigned_count, errors=result.errors)


@router.post("/{pending_id}/assign", response_model=LogEntry)
async def assign(
    pending_id: str,
    request: AssignRequest,
    caller: CallerIdentity = Depends(get_caller),
    queue: ReviewQueueManager = Depends(get_review_queue),
):
    """Assign a pending email to a case."""
    try:
        entry = await queue.assign(pending_id, request.case_id, caller, request.reason)
    except CasemailError as e:
        raise to_http_exception(e) from e
    return LogEntry.model_validate(entry)


@router.post("/{pending_id}/dismiss", response_model=LogEntry)
async def dismiss(
    pending_id: str,
    request: Optional[DismissRequest] = None,
    caller: CallerIdentity = Depends(get_caller),
    queue: ReviewQueueManager = Depends(get_review_queue),
):
    """Resolve a pending email without assigning it."""
    try:
        entry = await queue.dismiss(pending_id, caller, request.reason if request else None)
    except CasemailError as e:
        raise to_http_exception(e) from e
    return LogEntry.model_validate(entry)


@router.get("/emails/{email_id}/history", response_model=list[LogEntry])
async def email_history(
    email_id: str,
    caller: CallerIdentity = Depends(get_caller),
    queue: ReviewQueueManager = Depends(get_review_queue),
):
    """Classification audit trail of one email, newest first."""
    try:
        entries = await queue.email_history(email_id, caller)
    except CasemailError as e:
        raise to_http_exception(e) from e
    return [LogEntry.model_validate(e) for e in entries]


@router.post("/emails/{email_id}/move", response_model=LogEntry)
async def move_email(
    email_id: str,
    request: MoveRequest,
    caller: CallerIdentity = Depends(get_caller),
    queue: ReviewQueueManager = Depends(get_review_queue),
):
    """Move an already classified email to another case."""
    try:
        entry = await queue.move_email(email_id, request.case_id, caller, request.reason)
    except CasemailError as e:
        raise to_http_exception(e) from e
    return LogEntry.model_validate(entry)


@router.post("/emails/{email_id}/ignore", response_model=LogEntry)
async def ignore_email(
    email_id: str,
    request: Optional[DismissRequest] = None,
    caller: CallerIdentity = Depends(get_caller),
    queue: ReviewQueueManager = Depends(get_review_queue),
):
    """Mark an email as not related to any case."""
    try:
        entry = await queue.ignore_email(email_id, caller, request.reason if request else None)
    except CasemailError as e:
        raise to_http_exception(e) from e
    return LogEntry.model_validate(entry)
