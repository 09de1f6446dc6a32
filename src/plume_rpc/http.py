"""
HTTP front end for the Plume RPC server.

create_app() builds a FastAPI application with a single catch-all route:
- Only POST is serviced (any path); other methods get 405 "POST only".
- The body is counted as it streams in; once it exceeds the configured cap
  the read is abandoned and 413 "request too large" is returned. A declared
  Content-Length over the cap is refused before any of the body is read.
- The body is decoded as UTF-8 and parsed as strict JSON; failures return
  400 with the parser's message. Parsed bodies go to the Dispatcher.

Every response body is JSON with ``Content-Type: application/json``.
Connection handling and HTTP/1.1 framing are left to the ASGI server
(uvicorn, see RPCServer).
"""

from __future__ import annotations

import json
import time
from typing import Any, NoReturn

from fastapi import FastAPI, Request
from fastapi.responses import Response
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.requests import ClientDisconnect

from plume_rpc.dispatcher import Dispatcher, error_response
from plume_rpc.errors import (
    HandlerFailureError,
    MalformedRequestError,
    MethodNotAllowedError,
    PayloadTooLargeError,
    RPCError,
)
from plume_rpc.logging import get_logger
from plume_rpc.routing import RPCResponse

logger = get_logger(__name__)

JSON_MEDIA_TYPE = "application/json"
_COMPACT = (",", ":")


def _reject_constant(name: str) -> NoReturn:
    raise MalformedRequestError(f"Unexpected token {name} in JSON")


def parse_json_body(body: bytes) -> Any:
    """
    Decode a request body as UTF-8 JSON.

    ``NaN``, ``Infinity`` and ``-Infinity`` are not JSON and are rejected.

    Raises:
        MalformedRequestError: Carrying the decoder's or parser's message.
    """
    try:
        return json.loads(body.decode("utf-8"), parse_constant=_reject_constant)
    except UnicodeDecodeError as e:
        raise MalformedRequestError(f"Invalid body encoding: {e}") from e
    except json.JSONDecodeError as e:
        raise MalformedRequestError(str(e)) from e


def encode_response(response: RPCResponse) -> tuple[int, bytes]:
    """
    Serialize a response body to UTF-8 JSON.

    Returns:
        Tuple of (status, body bytes). Unserializable bodies, including
        non-finite floats, become a 500.
    """
    try:
        payload = json.dumps(
            response.body, separators=_COMPACT, ensure_ascii=False, allow_nan=False
        )
    except (TypeError, ValueError) as e:
        logger.error("Response body is not JSON serializable", extra={"error": str(e)})
        failure = HandlerFailureError(f"rpc failed: {e}")
        return failure.status_code, json.dumps(failure.to_dict(), separators=_COMPACT).encode()

    try:
        return response.status, payload.encode("utf-8")
    except UnicodeEncodeError:
        # Lone surrogates have no UTF-8 form, so fall back to ASCII escapes
        escaped = json.dumps(response.body, separators=_COMPACT, allow_nan=False)
        return response.status, escaped.encode("ascii")


def json_response(response: RPCResponse, headers: dict[str, str] | None = None) -> Response:
    """Build the HTTP response for an RPCResponse."""
    status, body = encode_response(response)
    return Response(content=body, status_code=status, media_type=JSON_MEDIA_TYPE, headers=headers)


async def read_body(request: Request, max_size: int) -> bytes:
    """
    Read the whole request body while enforcing a running byte cap.

    Raises:
        PayloadTooLargeError: As soon as the body exceeds the cap.
        ClientDisconnect: If the client hangs up mid-body.
    """
    declared = request.headers.get("content-length")
    if declared is not None and declared.isdigit() and int(declared) > max_size:
        raise PayloadTooLargeError(details={"content_length": int(declared)})

    received = 0
    chunks: list[bytes] = []
    async for chunk in request.stream():
        received += len(chunk)
        if received > max_size:
            raise PayloadTooLargeError(details={"received": received})
        chunks.append(chunk)
    return b"".join(chunks)


def create_app(dispatcher: Dispatcher, max_body_size: int) -> FastAPI:
    """
    Create the FastAPI application serving RPC requests.

    Args:
        dispatcher: Dispatcher that parsed request bodies are handed to.
        max_body_size: Hard cap on a request body, in bytes.

    Example:
        >>> app = create_app(dispatcher, max_body_size=10 * 1024 * 1024)
    """
    app = FastAPI(openapi_url=None, docs_url=None, redoc_url=None)

    @app.exception_handler(RPCError)
    async def rpc_error_handler(request: Request, exc: RPCError) -> Response:
        return json_response(error_response(exc))

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> Response:
        if exc.status_code == 405:
            error: RPCError = MethodNotAllowedError(details={"method": request.method})
        else:
            error = RPCError(str(exc.detail), status_code=exc.status_code)
        return json_response(error_response(error), headers=exc.headers)

    @app.post("/{path:path}", include_in_schema=False)
    async def handle_rpc(request: Request) -> Response:
        started = time.perf_counter()
        try:
            body = await read_body(request, max_body_size)
        except ClientDisconnect:
            logger.debug("Client disconnected", extra={"path": request.url.path})
            return Response(status_code=400)

        response = await dispatcher.dispatch(parse_json_body(body))
        logger.debug(
            "HTTP request served",
            extra={
                "path": request.url.path,
                "status": response.status,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
            },
        )
        return json_response(response)

    return app
