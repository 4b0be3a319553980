"""FastAPI app entry."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from jimmygate.adapters.openai_compat.router import router as openai_router
from jimmygate.adapters.openai_compat.upstream import close_upstream_async_client
from jimmygate.config.settings import settings
from jimmygate.core.errors import ErrorKind, GatewayError, error_envelope
from jimmygate.util.logger import logger

_CORS_HEADERS = {
    "access-control-allow-origin": "*",
    "access-control-allow-methods": "GET,POST,OPTIONS",
    "access-control-allow-headers": "authorization,content-type",
}

# 不暴露 /docs、/redoc、/openapi.json，未知路径统一走 not_found
app = FastAPI(title=settings.app_name, docs_url=None, redoc_url=None, openapi_url=None)
app.include_router(openai_router, prefix="/v1")


def _apply_cors(response: Response) -> Response:
    for name, value in _CORS_HEADERS.items():
        response.headers[name] = value
    return response


def _error_response(status_code: int, message: str, error_type: str, code: str | None = None, param: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=error_envelope(message, error_type, code=code, param=param),
    )


@app.middleware("http")
async def gateway_boundary_middleware(request: Request, call_next):
    logger.debug("boundary enter method=%s path=%s", request.method, request.url.path)
    if request.method.upper() == "OPTIONS":
        return _apply_cors(Response(status_code=204))

    try:
        response = await call_next(request)
    except Exception:
        logger.exception("gateway unhandled exception method=%s path=%s", request.method, request.url.path)
        response = _error_response(500, "Internal proxy error", ErrorKind.API.value, code="internal_error")
    logger.debug(
        "boundary pass method=%s path=%s status=%s",
        request.method,
        request.url.path,
        response.status_code,
    )
    return _apply_cors(response)


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "request failed path=%s status=%s type=%s code=%s message=%s",
        request.url.path,
        exc.status_code,
        exc.error_type,
        exc.code,
        exc.message,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_envelope())


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == 404:
        return _error_response(
            404,
            f"Unknown route: {request.url.path}",
            ErrorKind.INVALID_REQUEST.value,
            code="not_found",
        )
    return _error_response(exc.status_code, str(exc.detail), ErrorKind.INVALID_REQUEST.value)


@app.get("/healthz")
def healthz() -> dict:
    logger.debug("health check")
    return {"ok": True, "upstream": settings.upstream_base_url}


@app.on_event("shutdown")
async def shutdown_cleanup() -> None:
    await close_upstream_async_client()
