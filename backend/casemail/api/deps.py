"""Shared API dependencies — caller identity, service access, error mapping."""

from fastapi import Header, HTTPException

from casemail.exceptions import (
    AlreadyResolvedError,
    AuthorizationError,
    CasemailError,
    NotFoundError,
)
from casemail.services.processor import ClassificationProcessor, classification_processor
from casemail.services.review_queue import ReviewQueueManager, review_queue
from casemail.services.types import CallerIdentity


async def get_caller(
    x_user_id: str = Header(..., description="Authenticated user id"),
    x_firm_id: str = Header(..., description="Firm of the authenticated user"),
) -> CallerIdentity:
    """Identity set by the upstream auth gateway."""
    return CallerIdentity(user_id=x_user_id, firm_id=x_firm_id)


def get_processor() -> ClassificationProcessor:
    return classification_processor


def get_review_queue() -> ReviewQueueManager:
    return review_queue


def to_http_exception(e: CasemailError) -> HTTPException:
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, AuthorizationError):
        return HTTPException(status_code=403, detail=str(e))
    if isinstance(e, AlreadyResolvedError):
        return HTTPException(status_code=409, detail=str(e))
    return HTTPException(status_code=400, detail=str(e))
