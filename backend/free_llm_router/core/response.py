from typing import Any
from uuid import uuid4

from fastapi import Request
from fastapi.responses import JSONResponse, Response

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}


class ApiError(Exception):
    """Raised from dependencies; rendered by the app-level exception handler."""

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        headers: dict[str, str] | None = None,
    ):
        self.status_code = status_code
        self.code = code
        self.message = message
        self.headers = headers or {}
        super().__init__(message)


def request_id_from_request(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if not request_id:
        request_id = str(uuid4())
        request.state.request_id = request_id
    return request_id


def _merge_headers(headers: dict[str, str] | None, cors: bool) -> dict[str, str]:
    merged = dict(CORS_HEADERS) if cors else {}
    if headers:
        merged.update(headers)
    return merged


def ok(
    data: Any,
    request_id: str,
    status_code: int = 200,
    headers: dict[str, str] | None = None,
    cors: bool = False,
) -> JSONResponse:
    merged = _merge_headers(headers, cors)
    merged["X-Request-Id"] = request_id
    return JSONResponse(status_code=status_code, content=data, headers=merged)


def error(
    code: str,
    message: str,
    request_id: str,
    status_code: int = 400,
    headers: dict[str, str] | None = None,
    cors: bool = False,
) -> JSONResponse:
    merged = _merge_headers(headers, cors)
    merged["X-Request-Id"] = request_id
    return JSONResponse(
        status_code=status_code,
        content={"error": message, "code": code, "requestId": request_id},
        headers=merged,
    )


def preflight() -> Response:
    return Response(status_code=204, headers=dict(CORS_HEADERS))
