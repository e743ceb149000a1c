from __future__ import annotations

import inspect
import json
import logging
import time
import traceback
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from pydantic import ValidationError

from .codec import coerce_result, decode, encode
from .config import Settings, get_settings
from .func_host import FunctionNotFound, HostSlot
from .logging_config import HTTP_LOGGER
from .models import SerializedMessageEnvelope

logger = logging.getLogger(HTTP_LOGGER)

REQUIRED_SHAPE = '{"message": {"text": "your input to the function"}}'


class InvalidMessage(ValueError):
    """Raised when a request body does not have the message envelope shape."""

    def __init__(self, raw_body: str):
        self.raw_body = raw_body
        super().__init__(
            f"Request body must be of the shape: {REQUIRED_SHAPE}. However, the body was: {raw_body}"
        )


class FunctionInvocationError(RuntimeError):
    """An agent function raised; reported to the caller as a 500."""

    def __init__(self, func_name: str, error: BaseException):
        self.func_name = func_name
        self.error = error
        super().__init__(str(error))

    def to_body(self) -> Dict[str, str]:
        return {
            "message": str(self.error),
            "stack": "".join(traceback.format_exception(type(self.error), self.error, self.error.__traceback__)),
        }


def _parse_envelope(body_bytes: bytes) -> SerializedMessageEnvelope:
    raw_text = body_bytes.decode("utf-8", errors="replace")
    try:
        payload = json.loads(raw_text) if raw_text.strip() else None
    except json.JSONDecodeError as exc:
        raise InvalidMessage(raw_text) from exc
    try:
        return SerializedMessageEnvelope.model_validate(payload)
    except ValidationError as exc:
        echoed = json.dumps(payload) if payload is not None else raw_text
        raise InvalidMessage(echoed) from exc


async def run_function(slot: HostSlot, func_name: str, body_bytes: bytes) -> Response:
    """
    Decode, invoke and encode one function call.

    Free of routing concerns so it is easy to exercise directly. The host is
    read from the slot exactly once, so a concurrent reload is never seen
    half-applied.
    """
    try:
        envelope = _parse_envelope(body_bytes)
    except InvalidMessage as exc:
        return PlainTextResponse(status_code=400, content=str(exc))

    host = slot.current
    message = decode(envelope.message)
    try:
        result = await run_in_threadpool(host.invoke, func_name, message)
        if inspect.isawaitable(result):
            result = await result
        res_message = coerce_result(result)
    except FunctionNotFound as exc:
        return PlainTextResponse(status_code=404, content=str(exc))
    except Exception as exc:
        body = FunctionInvocationError(func_name, exc).to_body()
        logger.error(
            "Error running agent function",
            extra={"function_name": func_name, "error": body},
        )
        return JSONResponse(status_code=500, content=body)

    return JSONResponse(status_code=200, content={"message": encode(res_message)})


def create_app(slot: HostSlot, settings: Optional[Settings] = None) -> FastAPI:
    """Build the HTTP surface over whatever host `slot` currently holds."""
    settings = settings or get_settings()
    app = FastAPI(title="Agent Host", version="0.1.0")
    app.state.host_slot = slot
    app.state.settings = settings

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.monotonic()
        response = await call_next(request)
        latency_ms = (time.monotonic() - start) * 1000.0
        logger.info(
            "request method=%s path=%s status=%s latency_ms=%.2f",
            request.method,
            request.url.path,
            response.status_code,
            latency_ms,
        )
        return response

    @app.get("/")
    async def metadata() -> Dict[str, Any]:
        """Current agent metadata."""
        return slot.current.metadata().model_dump()

    @app.post("/{func_name}")
    async def call_function(func_name: str, request: Request) -> Response:
        body_bytes = await request.body()
        logger.debug(
            "Handling request",
            extra={"params": {"func_name": func_name}, "body": body_bytes.decode("utf-8", errors="replace")},
        )
        return await run_function(slot, func_name, body_bytes)

    return app
