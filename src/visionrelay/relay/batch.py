"""Batch prediction over stored images.

Architecture:
    references -> storage.exists/read -> classifier.classify -> ordered results

Every input reference yields exactly one result, in input order. A failure
on one item (missing file, read error, classifier error) becomes that
item's result and never stops the rest of the batch. With
``max_concurrent=1`` items are processed strictly one at a time; higher
values run up to that many items at once, gated by a semaphore.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from visionrelay.relay.classifier import ClassifierError

if TYPE_CHECKING:
    from visionrelay.log import RelayLogger
    from visionrelay.relay.classifier import ImageClassifier, Prediction
    from visionrelay.relay.storage import ImageStorage

IMAGE_NOT_FOUND = "Image file does not exist"
PREDICTION_FAILED = "Prediction failed"
INVALID_IMAGES = "Invalid input format. 'images' should be an array."


class InvalidInputError(ValueError):
    """The batch payload is not a list of image references."""

    def __init__(self, message: str = INVALID_IMAGES) -> None:
        super().__init__(message)


@dataclass(frozen=True)
class ImageReference:
    """A client-supplied pointer to a stored image, valid for one request."""

    image: Any

    @classmethod
    def parse(cls, item: object) -> ImageReference:
        """Wrap one ``{"image": name}`` payload entry; anything else refers to nothing."""
        if isinstance(item, dict):
            return cls(image=item.get("image"))
        return cls(image=None)


@dataclass(frozen=True)
class PredictionResult:
    """Outcome for one reference: either predictions or an error, never both."""

    reference: ImageReference
    predictions: list[Prediction] | None = None
    error: str | None = None

    def __post_init__(self) -> None:
        if (self.predictions is None) == (self.error is None):
            raise ValueError("Exactly one of 'predictions' and 'error' must be set")

    @classmethod
    def success(cls, reference: ImageReference, predictions: list[Prediction]) -> PredictionResult:
        return cls(reference=reference, predictions=predictions)

    @classmethod
    def failure(cls, reference: ImageReference, error: str) -> PredictionResult:
        return cls(reference=reference, error=error)

    @property
    def path(self) -> Any:
        return self.reference.image

    @property
    def ok(self) -> bool:
        return self.error is None


class BatchPredictor:
    """Resolves stored images and classifies them one reference at a time."""

    def __init__(
        self,
        storage: ImageStorage,
        classifier: ImageClassifier,
        logger: RelayLogger | None = None,
        max_concurrent: int = 1,
    ) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self._storage = storage
        self._classifier = classifier
        self._logger = logger if logger is not None else logging.getLogger(__name__)
        self._max_concurrent = max_concurrent

    @staticmethod
    def parse_references(images: object) -> list[ImageReference]:
        """Turn the ``images`` payload into references.

        Raises:
            InvalidInputError: If ``images`` is not a list.
        """
        if not isinstance(images, list | tuple):
            raise InvalidInputError
        return [ImageReference.parse(item) for item in images]

    async def predict(self, images: object) -> list[PredictionResult]:
        """Classify every referenced image and return one result per reference.

        Raises:
            InvalidInputError: If ``images`` is not a list. This is the only
                error that escapes; per-item failures become results.
        """
        references = self.parse_references(images)
        self._logger.info("Received %d images for prediction", len(references))

        if self._max_concurrent == 1:
            results = [await self._predict_one(reference) for reference in references]
        else:
            semaphore = asyncio.Semaphore(self._max_concurrent)

            async def bounded(reference: ImageReference) -> PredictionResult:
                async with semaphore:
                    return await self._predict_one(reference)

            results = list(await asyncio.gather(*(bounded(reference) for reference in references)))

        failed = sum(1 for result in results if not result.ok)
        self._logger.info("Batch complete: %d succeeded, %d failed", len(results) - failed, failed)
        return results

    async def _predict_one(self, reference: ImageReference) -> PredictionResult:
        name = reference.image
        self._logger.info("Processing image: %s", name)

        try:
            if not await self._storage.exists(name):
                self._logger.error("Image file does not exist: %s", name)
                return PredictionResult.failure(reference, IMAGE_NOT_FOUND)
            image = await self._storage.read(name)
        except Exception:
            self._logger.exception("Failed to read image %s", name)
            return PredictionResult.failure(reference, IMAGE_NOT_FOUND)

        try:
            predictions = await self._classifier.classify(image)
        except ClassifierError as exc:
            self._logger.error("Prediction failed for %s (%s): %s", name, exc.kind, exc.detail)
            return PredictionResult.failure(reference, PREDICTION_FAILED)
        except Exception:
            self._logger.exception("Unexpected error classifying %s", name)
            return PredictionResult.failure(reference, PREDICTION_FAILED)

        self._logger.info("Prediction successful for image: %s", name)
        return PredictionResult.success(reference, predictions)
