"""API route definitions."""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, File, HTTPException, Request, UploadFile, status
from fastapi.responses import FileResponse, JSONResponse, PlainTextResponse

from visionrelay.api.middleware import get_request_logger
from visionrelay.api.schemas import (
    ErrorResponse,
    HealthResponse,
    PredictionItem,
    StoredImage,
    UploadResponse,
    to_response_item,
)
from visionrelay.relay.batch import BatchPredictor, InvalidInputError
from visionrelay.relay.classifier import CustomVisionClassifier
from visionrelay.relay.storage import InvalidImageNameError, make_storage_name

if TYPE_CHECKING:
    import httpx

    from visionrelay.config import Settings
    from visionrelay.log import RelayLogger
    from visionrelay.relay.storage import FileSystemStorage

router = APIRouter()


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_storage(request: Request, logger: RelayLogger) -> FileSystemStorage:
    storage: FileSystemStorage = request.app.state.storage
    return storage.with_logger(logger)


def _get_predictor(request: Request, logger: RelayLogger) -> BatchPredictor:
    settings = _get_settings(request)
    http_client: httpx.AsyncClient = request.app.state.http_client
    classifier = CustomVisionClassifier(
        endpoint=settings.classifier_endpoint,
        prediction_key=settings.classifier_prediction_key,
        http_client=http_client,
        logger=logger,
    )
    return BatchPredictor(
        storage=_get_storage(request, logger),
        classifier=classifier,
        logger=logger,
        max_concurrent=settings.max_concurrent,
    )


@router.post(
    "/upload",
    response_model=UploadResponse,
    responses={status.HTTP_400_BAD_REQUEST: {"content": {"text/plain": {}}}},
    summary="Upload an image",
)
async def upload(
    request: Request,
    file: Annotated[UploadFile | None, File()] = None,
) -> UploadResponse | PlainTextResponse:
    """Store an uploaded image and return the name it can be predicted under."""
    logger = get_request_logger(request, __name__)
    if file is None or not file.filename:
        logger.warning("Upload request without a file")
        return PlainTextResponse("No file uploaded.", status_code=status.HTTP_400_BAD_REQUEST)

    settings = _get_settings(request)
    name = make_storage_name(file.filename, unique=settings.unique_storage_names)
    data = await file.read()
    try:
        await _get_storage(request, logger).write(name, data)
    except InvalidImageNameError:
        logger.warning("Rejected upload with unusable file name %r", file.filename)
        return PlainTextResponse("Invalid file name.", status_code=status.HTTP_400_BAD_REQUEST)

    logger.info("File uploaded: %s", file.filename)
    return UploadResponse(images=[StoredImage(image=name)])


@router.post(
    "/predict",
    response_model=list[PredictionItem],
    responses={status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse}},
    summary="Classify stored images",
)
async def predict(request: Request) -> list[PredictionItem] | JSONResponse:
    """Classify each referenced image, returning one result per reference in order."""
    logger = get_request_logger(request, __name__)
    try:
        payload = await request.json()
    except ValueError:
        payload = None
    images = payload.get("images") if isinstance(payload, dict) else None

    try:
        results = await _get_predictor(request, logger).predict(images)
    except InvalidInputError as exc:
        logger.warning("%s", exc)
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=ErrorResponse(error=str(exc)).model_dump(),
        )

    return [to_response_item(result) for result in results]


@router.get(
    "/uploads/{name}",
    response_class=FileResponse,
    responses={status.HTTP_404_NOT_FOUND: {"description": "Image not found"}},
    summary="Download a stored image",
)
async def get_upload(name: str, request: Request) -> FileResponse:
    """Serve the raw bytes of a stored image."""
    storage = _get_storage(request, get_request_logger(request, __name__))
    if not await storage.exists(name):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Image not found")
    return FileResponse(storage.resolve(name))


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = _get_settings(request)
    storage: FileSystemStorage = request.app.state.storage
    return HealthResponse(
        status="ok",
        classifier_configured=bool(settings.classifier_endpoint),
        upload_dir=str(storage.root),
    )
