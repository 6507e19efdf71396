"""Pydantic schemas for public feedback submission."""

from __future__ import annotations

from pydantic import BaseModel, Field


class FeedbackSubmission(BaseModel):
    """Feedback left by a customer on a public experience page."""

    customer_name: str = Field(
        ..., min_length=1, max_length=100, description="Display name of the customer."
    )
    customer_email: str | None = Field(
        default=None, max_length=254, description="Optional contact address."
    )
    overall_rating: int = Field(..., ge=1, le=5, description="Rating from 1 to 5.")
    comment: str = Field(
        default="", max_length=2000, description="Free-text comment."
    )


class FeedbackReceipt(BaseModel):
    """Acknowledgement returned once a submission has been admitted."""

    status: str = Field(default="received", description="Always 'received'.")
    experience_slug: str = Field(..., description="Experience the feedback belongs to.")
    overall_rating: int = Field(..., description="Echo of the submitted rating.")
