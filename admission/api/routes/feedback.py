from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Path, status

from admission.core.errors import ValidationAppError
from admission.core.rate_limit import rate_limited
from admission.schemas.feedback import FeedbackReceipt, FeedbackSubmission
from admission.services.limiter_registry import FEEDBACK

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Feedback"])


@router.post(
    "/experiences/{slug}/feedback",
    response_model=FeedbackReceipt,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limited(FEEDBACK))],
)
async def submit_feedback(
    submission: FeedbackSubmission,
    slug: str = Path(..., pattern=r"^[a-z0-9][a-z0-9-]{0,127}$"),
) -> FeedbackReceipt:
    """Accept a public feedback submission for an experience.

    Admission is checked before the body is processed; persisting the
    feedback is handled downstream.

    Raises:
        ValidationAppError: If the customer name is blank.
    """
    if not submission.customer_name.strip():
        raise ValidationAppError(
            code="invalid_customer_name",
            message="customer_name must not be blank",
        )

    logger.info(
        "feedback.received",
        extra={
            "experience_slug": slug,
            "overall_rating": submission.overall_rating,
            "comment_chars": len(submission.comment),
        },
    )
    return FeedbackReceipt(experience_slug=slug, overall_rating=submission.overall_rating)
