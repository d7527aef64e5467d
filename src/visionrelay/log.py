"""Logging setup and the per-request logger passed to relay components."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import MutableMapping
    from typing import TypeAlias

    from visionrelay.config import Settings

    # Anything the relay components accept as their logging capability.
    RelayLogger: TypeAlias = logging.Logger | logging.LoggerAdapter[logging.Logger]

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(settings: Settings) -> None:
    """Log to the console and, when ``log_file`` is set, to that file as well."""
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if settings.log_file:
        handlers.append(logging.FileHandler(settings.log_file, encoding="utf-8"))

    logging.basicConfig(
        level=settings.log_level.upper(),
        format=LOG_FORMAT,
        handlers=handlers,
    )


class RequestLoggerAdapter(logging.LoggerAdapter):  # type: ignore[type-arg]
    """Prefix every message with the request correlation ID."""

    def __init__(self, logger: logging.Logger, request_id: str) -> None:
        super().__init__(logger, {"request_id": request_id})

    @property
    def request_id(self) -> str:
        return str(self.extra["request_id"]) if self.extra else ""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**(kwargs.get("extra") or {}), "request_id": self.request_id}
        return f"[req={self.request_id}] {msg}", kwargs
