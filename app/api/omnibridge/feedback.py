from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_tenant_id
from app.schemas.common import ListResponse
from app.schemas.omnibridge.feedback import (
    FeedbackCreate,
    FeedbackRead,
    FeedbackResolve,
    FeedbackStats,
    FeedbackUpdate,
)
from app.services.omnibridge.feedback import feedback

router = APIRouter(prefix="/feedback", tags=["omnibridge-feedback"])


@router.get("/stats", response_model=FeedbackStats)
def feedback_stats(
    rule_id: str | None = None, tenant_id: UUID = Depends(get_tenant_id), db: Session = Depends(get_db)
):
    return feedback.stats(db, tenant_id, rule_id=rule_id)


@router.get("", response_model=ListResponse[FeedbackRead])
def list_feedback(
    execution_log_id: str | None = None,
    rule_id: str | None = None,
    resolved: bool | None = None,
    severity: str | None = None,
    rating: str | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    tenant_id: UUID = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    return feedback.list_response(
        db,
        tenant_id,
        execution_log_id=execution_log_id,
        rule_id=rule_id,
        resolved=resolved,
        severity=severity,
        rating=rating,
        limit=limit,
        offset=offset,
    )


@router.post("", response_model=FeedbackRead, status_code=status.HTTP_201_CREATED)
def create_feedback(payload: FeedbackCreate, tenant_id: UUID = Depends(get_tenant_id), db: Session = Depends(get_db)):
    return feedback.create(db, tenant_id, payload)


@router.get("/{feedback_id}", response_model=FeedbackRead)
def get_feedback(feedback_id: str, tenant_id: UUID = Depends(get_tenant_id), db: Session = Depends(get_db)):
    return feedback.get(db, tenant_id, feedback_id)


@router.patch("/{feedback_id}", response_model=FeedbackRead)
def update_feedback(
    feedback_id: str,
    payload: FeedbackUpdate,
    tenant_id: UUID = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    return feedback.update(db, tenant_id, feedback_id, payload)


@router.post("/{feedback_id}/resolve", response_model=FeedbackRead)
def resolve_feedback(
    feedback_id: str,
    payload: FeedbackResolve,
    tenant_id: UUID = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    return feedback.resolve(db, tenant_id, feedback_id, payload)


@router.delete("/{feedback_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_feedback(feedback_id: str, tenant_id: UUID = Depends(get_tenant_id), db: Session = Depends(get_db)):
    feedback.delete(db, tenant_id, feedback_id)
