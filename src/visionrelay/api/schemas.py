"""Pydantic request/response schemas for the VisionRelay API."""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, field_serializer

if TYPE_CHECKING:
    from visionrelay.relay.batch import PredictionResult


class StoredImage(BaseModel):
    """Reference to a stored image by name."""

    image: str


class UploadResponse(BaseModel):
    """Response for the upload endpoint."""

    images: list[StoredImage]


class TagPrediction(BaseModel):
    """A single tag with its probability as a percentage."""

    model_config = ConfigDict(populate_by_name=True)

    tag_name: str = Field(alias="tagName")
    probability: Decimal = Field(ge=0, le=100, description="Percentage with exactly two decimal places (0.00-100.00)")

    @field_serializer("probability")
    def _two_places(self, value: Decimal) -> str:
        return f"{value:.2f}"


class PredictionSuccess(BaseModel):
    """Predictions for one referenced image."""

    path: Any
    predictions: list[TagPrediction]


class PredictionFailure(BaseModel):
    """Error for one referenced image."""

    path: Any
    error: str


PredictionItem = PredictionSuccess | PredictionFailure


def to_response_item(result: PredictionResult) -> PredictionItem:
    """Convert an orchestrator result into its wire shape."""
    if result.predictions is None:
        return PredictionFailure(path=result.path, error=result.error or "")
    return PredictionSuccess(
        path=result.path,
        predictions=[
            TagPrediction(tag_name=prediction.tag_name, probability=prediction.probability)
            for prediction in result.predictions
        ],
    )


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    classifier_configured: bool
    upload_dir: str


class ErrorResponse(BaseModel):
    """Error body for a malformed predict request."""

    error: str
