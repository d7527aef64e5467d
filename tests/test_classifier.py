"""Tests for the external classifier client."""

from __future__ import annotations

import json
from decimal import Decimal
from typing import TYPE_CHECKING

import httpx
import pytest

from visionrelay.relay.classifier import (
    ClassifierError,
    ClassifierErrorKind,
    CustomVisionClassifier,
    Prediction,
)

if TYPE_CHECKING:
    from collections.abc import Callable

ENDPOINT = "https://vision.example.com/customvision/v3.0/Prediction/project/classify/iterations/it1/image"


def _classifier(
    handler: Callable[[httpx.Request], httpx.Response],
    endpoint: str | None = ENDPOINT,
    prediction_key: str | None = "secret-key",
) -> CustomVisionClassifier:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return CustomVisionClassifier(endpoint, prediction_key, http_client)


def _ok(predictions: list[dict[str, object]]) -> Callable[[httpx.Request], httpx.Response]:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"id": "abc", "predictions": predictions})

    return handler


class TestPrediction:
    @pytest.mark.parametrize(
        ("fraction", "expected"),
        [
            (0.97531, "97.53"),
            (0.5, "50.00"),
            (1, "100.00"),
            (0, "0.00"),
            (0.123456, "12.35"),
            (0.00005, "0.01"),
        ],
    )
    def test_from_fraction_rounds_to_two_places(self, fraction: float, expected: str) -> None:
        prediction = Prediction.from_fraction("cat", fraction)
        assert prediction.probability == Decimal(expected)
        assert str(prediction.probability) == expected

    @pytest.mark.parametrize("fraction", [-0.01, 1.5, float("nan"), float("inf"), "abc", True])
    def test_from_fraction_rejects_invalid(self, fraction: object) -> None:
        with pytest.raises(ValueError):
            Prediction.from_fraction("cat", fraction)  # type: ignore[arg-type]


class TestCustomVisionClassifier:
    async def test_returns_predictions_in_remote_order(self) -> None:
        classifier = _classifier(
            _ok(
                [
                    {"tagName": "dog", "probability": 0.1, "tagId": "1"},
                    {"tagName": "cat", "probability": 0.9, "tagId": "2"},
                ]
            )
        )
        predictions = await classifier.classify(b"image")
        assert predictions == [
            Prediction("dog", Decimal("10.00")),
            Prediction("cat", Decimal("90.00")),
        ]

    async def test_sends_raw_bytes_with_prediction_key(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"predictions": []})

        await _classifier(handler).classify(b"\x89PNG raw")

        assert len(seen) == 1
        request = seen[0]
        assert request.method == "POST"
        assert str(request.url) == ENDPOINT
        assert request.content == b"\x89PNG raw"
        assert request.headers["Prediction-Key"] == "secret-key"
        assert request.headers["Content-Type"] == "application/octet-stream"

    async def test_empty_prediction_list(self) -> None:
        assert await _classifier(_ok([])).classify(b"image") == []

    async def test_network_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ClassifierError) as exc_info:
            await _classifier(handler).classify(b"image")
        assert exc_info.value.kind == ClassifierErrorKind.NETWORK
        assert "connection refused" in exc_info.value.detail

    async def test_timeout_is_a_network_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(ClassifierError) as exc_info:
            await _classifier(handler).classify(b"image")
        assert exc_info.value.kind == ClassifierErrorKind.NETWORK

    async def test_missing_endpoint_fails_without_calling_out(self) -> None:
        calls: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json={"predictions": []})

        with pytest.raises(ClassifierError) as exc_info:
            await _classifier(handler, endpoint=None).classify(b"image")
        assert exc_info.value.kind == ClassifierErrorKind.NETWORK
        assert calls == []

    async def test_remote_error_payload(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                400,
                json={"error": {"code": "BadRequestImageFormat", "message": "Bad Request Image Format"}},
            )

        with pytest.raises(ClassifierError) as exc_info:
            await _classifier(handler).classify(b"image")
        assert exc_info.value.kind == ClassifierErrorKind.REMOTE
        assert exc_info.value.detail == "BadRequestImageFormat: Bad Request Image Format"

    async def test_remote_error_top_level_code(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"code": "401", "message": "Access denied"})

        with pytest.raises(ClassifierError) as exc_info:
            await _classifier(handler).classify(b"image")
        assert exc_info.value.kind == ClassifierErrorKind.REMOTE
        assert exc_info.value.detail == "401: Access denied"

    async def test_remote_error_without_body(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, text="Service Unavailable")

        with pytest.raises(ClassifierError) as exc_info:
            await _classifier(handler).classify(b"image")
        assert exc_info.value.kind == ClassifierErrorKind.REMOTE
        assert exc_info.value.detail == "HTTP 503"

    async def test_error_object_in_success_response(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"error": {"code": "Throttled", "message": "Too many requests"}})

        with pytest.raises(ClassifierError) as exc_info:
            await _classifier(handler).classify(b"image")
        assert exc_info.value.kind == ClassifierErrorKind.REMOTE
        assert exc_info.value.detail == "Throttled: Too many requests"

    @pytest.mark.parametrize(
        "body",
        [
            b"not json",
            json.dumps([1, 2, 3]).encode(),
            json.dumps({"id": "abc"}).encode(),
            json.dumps({"predictions": "cat"}).encode(),
            json.dumps({"predictions": [{"probability": 0.5}]}).encode(),
            json.dumps({"predictions": [{"tagName": "cat"}]}).encode(),
            json.dumps({"predictions": [{"tagName": "cat", "probability": "0.5"}]}).encode(),
            json.dumps({"predictions": [{"tagName": "cat", "probability": 1.7}]}).encode(),
        ],
    )
    async def test_malformed_responses(self, body: bytes) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=body, headers={"Content-Type": "application/json"})

        with pytest.raises(ClassifierError) as exc_info:
            await _classifier(handler).classify(b"image")
        assert exc_info.value.kind == ClassifierErrorKind.MALFORMED
