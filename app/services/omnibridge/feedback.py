"""Human feedback on automation executions."""

from __future__ import annotations

from datetime import UTC, datetime

from fastapi import HTTPException
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models.automation_rule import AutomationRuleLog
from app.models.omnibridge.enums import FeedbackRating, FeedbackSeverity
from app.models.omnibridge.feedback import FeedbackAnnotation
from app.schemas.omnibridge.feedback import FeedbackCreate, FeedbackResolve, FeedbackUpdate
from app.services.common import apply_pagination, coerce_uuid, validate_enum
from app.services.response import ListResponseMixin

RATING_SCORES = {
    FeedbackRating.excellent: 5,
    FeedbackRating.good: 4,
    FeedbackRating.neutral: 3,
    FeedbackRating.poor: 2,
    FeedbackRating.terrible: 1,
}


class FeedbackManager(ListResponseMixin):
    @staticmethod
    def create(db: Session, tenant_id, payload: FeedbackCreate) -> FeedbackAnnotation:
        tenant_uuid = coerce_uuid(tenant_id)
        log = db.get(AutomationRuleLog, payload.execution_log_id)
        # Logs of other tenants look exactly like missing ones.
        if log is None or log.tenant_id != tenant_uuid:
            raise HTTPException(status_code=404, detail="Execution log not found")
        annotation = FeedbackAnnotation(
            tenant_id=tenant_uuid,
            rule_id=log.rule_id,
            message_id=log.message_id,
            **payload.model_dump(),
        )
        db.add(annotation)
        db.commit()
        db.refresh(annotation)
        return annotation

    @staticmethod
    def get(db: Session, tenant_id, feedback_id) -> FeedbackAnnotation:
        annotation = db.get(FeedbackAnnotation, coerce_uuid(feedback_id))
        if not annotation or annotation.tenant_id != coerce_uuid(tenant_id):
            raise HTTPException(status_code=404, detail="Feedback not found")
        return annotation

    @staticmethod
    def list(
        db: Session,
        tenant_id,
        *,
        execution_log_id: str | None = None,
        rule_id: str | None = None,
        resolved: bool | None = None,
        severity: str | None = None,
        rating: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[FeedbackAnnotation]:
        query = db.query(FeedbackAnnotation).filter(FeedbackAnnotation.tenant_id == coerce_uuid(tenant_id))
        if execution_log_id:
            query = query.filter(FeedbackAnnotation.execution_log_id == coerce_uuid(execution_log_id))
        if rule_id:
            query = query.filter(FeedbackAnnotation.rule_id == coerce_uuid(rule_id))
        if resolved is not None:
            query = query.filter(FeedbackAnnotation.resolved.is_(resolved))
        if severity:
            query = query.filter(
                FeedbackAnnotation.severity == validate_enum(severity, FeedbackSeverity, "severity")
            )
        if rating:
            query = query.filter(FeedbackAnnotation.rating == validate_enum(rating, FeedbackRating, "rating"))
        query = query.order_by(FeedbackAnnotation.created_at.desc())
        return apply_pagination(query, limit, offset).all()

    @staticmethod
    def update(db: Session, tenant_id, feedback_id, payload: FeedbackUpdate) -> FeedbackAnnotation:
        annotation = FeedbackManager.get(db, tenant_id, feedback_id)
        for key, value in payload.model_dump(exclude_unset=True).items():
            setattr(annotation, key, value)
        db.commit()
        db.refresh(annotation)
        return annotation

    @staticmethod
    def resolve(db: Session, tenant_id, feedback_id, payload: FeedbackResolve) -> FeedbackAnnotation:
        annotation = FeedbackManager.get(db, tenant_id, feedback_id)
        annotation.resolved = True
        annotation.resolved_at = datetime.now(UTC)
        annotation.resolved_by = payload.resolved_by
        if payload.corrective_action:
            annotation.corrective_action = payload.corrective_action
        db.commit()
        db.refresh(annotation)
        return annotation

    @staticmethod
    def delete(db: Session, tenant_id, feedback_id) -> None:
        annotation = FeedbackManager.get(db, tenant_id, feedback_id)
        db.delete(annotation)
        db.commit()

    @staticmethod
    def stats(db: Session, tenant_id, rule_id: str | None = None) -> dict:
        query = db.query(FeedbackAnnotation).filter(FeedbackAnnotation.tenant_id == coerce_uuid(tenant_id))
        if rule_id:
            query = query.filter(FeedbackAnnotation.rule_id == coerce_uuid(rule_id))
        by_rating = {rating.value: 0 for rating in FeedbackRating}
        by_severity = {severity.value: 0 for severity in FeedbackSeverity}
        for rating, count in (
            query.with_entities(FeedbackAnnotation.rating, func.count(FeedbackAnnotation.id))
            .group_by(FeedbackAnnotation.rating)
            .all()
        ):
            if rating is not None:
                by_rating[rating.value] = count
        for severity, count in (
            query.with_entities(FeedbackAnnotation.severity, func.count(FeedbackAnnotation.id))
            .group_by(FeedbackAnnotation.severity)
            .all()
        ):
            if severity is not None:
                by_severity[severity.value] = count
        total = query.count()
        resolved = query.filter(FeedbackAnnotation.resolved.is_(True)).count()
        rated = sum(by_rating.values())
        average = None
        if rated:
            score = sum(RATING_SCORES[FeedbackRating(key)] * count for key, count in by_rating.items())
            average = round(score / rated, 2)
        return {
            "total": total,
            "by_rating": by_rating,
            "by_severity": by_severity,
            "resolved": resolved,
            "unresolved": total - resolved,
            "average_score": average,
        }


feedback = FeedbackManager()
