"""Client for the external image-classification API.

The remote service follows the Azure Custom Vision prediction shape:
raw image bytes in, ``{"predictions": [{"tagName", "probability"}]}`` out,
with probabilities as fractions in [0, 1].
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Protocol

import httpx

if TYPE_CHECKING:
    from visionrelay.log import RelayLogger

_TWO_PLACES = Decimal("0.01")
_HUNDRED = Decimal(100)


class ClassifierErrorKind(StrEnum):
    NETWORK = "network"
    REMOTE = "remote"
    MALFORMED = "malformed"


class ClassifierError(Exception):
    """A single classification call failed."""

    def __init__(self, kind: ClassifierErrorKind, detail: str) -> None:
        super().__init__(f"{kind}: {detail}")
        self.kind = kind
        self.detail = detail


@dataclass(frozen=True)
class Prediction:
    """A tag with its probability as a percentage rounded to two places."""

    tag_name: str
    probability: Decimal

    @classmethod
    def from_fraction(cls, tag_name: str, fraction: float | int | str) -> Prediction:
        """Build a prediction from a probability fraction in [0, 1].

        Raises:
            ValueError: If ``fraction`` is not a number in [0, 1].
        """
        if isinstance(fraction, bool):
            raise ValueError(f"Probability is not a number: {fraction!r}")
        try:
            value = Decimal(str(fraction))
        except InvalidOperation:
            raise ValueError(f"Probability is not a number: {fraction!r}") from None
        if not value.is_finite() or not 0 <= value <= 1:
            raise ValueError(f"Probability out of range: {fraction!r}")
        return cls(tag_name=tag_name, probability=(value * _HUNDRED).quantize(_TWO_PLACES, rounding=ROUND_HALF_UP))


class ImageClassifier(Protocol):
    """Protocol for image classification backends."""

    async def classify(self, image: bytes) -> list[Prediction]:
        """Classify raw image bytes.

        Returns:
            Predictions in the order the backend produced them.

        Raises:
            ClassifierError: If the call fails or the response is unusable.
        """
        ...


class CustomVisionClassifier:
    """Sends images to a Custom Vision style prediction endpoint.

    One HTTP request per image, no retries. The ``httpx.AsyncClient`` is
    owned by the caller so it can be shared (and its timeout configured)
    across requests.
    """

    def __init__(
        self,
        endpoint: str | None,
        prediction_key: str | None,
        http_client: httpx.AsyncClient,
        logger: RelayLogger | None = None,
    ) -> None:
        self._endpoint = endpoint
        self._prediction_key = prediction_key
        self._http = http_client
        self._logger = logger if logger is not None else logging.getLogger(__name__)

    async def classify(self, image: bytes) -> list[Prediction]:
        if not self._endpoint:
            raise ClassifierError(ClassifierErrorKind.NETWORK, "Classifier endpoint is not configured")

        headers = {"Content-Type": "application/octet-stream"}
        if self._prediction_key:
            headers["Prediction-Key"] = self._prediction_key

        try:
            response = await self._http.post(self._endpoint, content=image, headers=headers)
        except httpx.HTTPError as exc:
            raise ClassifierError(ClassifierErrorKind.NETWORK, str(exc) or type(exc).__name__) from exc

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if response.is_error:
            raise ClassifierError(ClassifierErrorKind.REMOTE, _remote_detail(payload, response.status_code))
        if isinstance(payload, dict) and "error" in payload:
            raise ClassifierError(ClassifierErrorKind.REMOTE, _remote_detail(payload, response.status_code))

        predictions = _parse_predictions(payload)
        self._logger.debug("Classifier returned %d predictions", len(predictions))
        return predictions


def _remote_detail(payload: Any, status_code: int) -> str:
    """Extract ``code: message`` from an error payload, else the HTTP status."""
    error = payload.get("error") if isinstance(payload, dict) else None
    if not isinstance(error, dict):
        error = payload if isinstance(payload, dict) else {}

    code = error.get("code")
    message = error.get("message")
    if code is None and message is None:
        return f"HTTP {status_code}"
    return f"{code}: {message}"


def _parse_predictions(payload: Any) -> list[Prediction]:
    if not isinstance(payload, dict):
        raise ClassifierError(ClassifierErrorKind.MALFORMED, "Response body is not a JSON object")

    items = payload.get("predictions")
    if not isinstance(items, list):
        raise ClassifierError(ClassifierErrorKind.MALFORMED, "Response has no 'predictions' list")

    predictions: list[Prediction] = []
    for index, item in enumerate(items):
        if not isinstance(item, dict) or not isinstance(item.get("tagName"), str):
            raise ClassifierError(ClassifierErrorKind.MALFORMED, f"Prediction {index} has no 'tagName'")
        probability = item.get("probability")
        if not isinstance(probability, int | float):
            raise ClassifierError(ClassifierErrorKind.MALFORMED, f"Prediction {index} has no numeric 'probability'")
        try:
            predictions.append(Prediction.from_fraction(item["tagName"], probability))
        except ValueError as exc:
            raise ClassifierError(ClassifierErrorKind.MALFORMED, f"Prediction {index}: {exc}") from None
    return predictions
