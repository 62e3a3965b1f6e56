from __future__ import annotations

import os
from typing import List

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from veledger.api.errors import ApiError
from veledger.api.routes_public import public_router
from veledger.api.security import RequestSizeLimitMiddleware
from veledger.api.structured_logging import RequestLogMiddleware
from veledger.runtime.executor_boot import build_executor as _build_executor
from veledger.runtime.structured_log import configure_structured_logging


def build_executor():
    """Build a VeExecutor for API runtime.

    This wrapper exists so tests can monkeypatch `veledger.api.app.build_executor`
    without reaching into runtime modules.
    """
    return _build_executor()


def _parse_cors_origins() -> List[str]:
    """Parse CORS origins with production-safe defaults.

    Policy:
      - If VELEDGER_CORS_ORIGINS is unset/empty -> CORS disabled
      - Wildcard "*" is rejected in VELEDGER_MODE=prod
    """
    raw = os.environ.get("VELEDGER_CORS_ORIGINS", "").strip()
    mode = os.environ.get("VELEDGER_MODE", "prod").strip().lower()

    if not raw:
        return []

    origins = [o.strip() for o in raw.split(",") if o.strip()]

    if "*" in origins:
        if mode == "prod":
            raise RuntimeError(
                "Unsafe CORS configuration: wildcard '*' not allowed in production. "
                "Set explicit origins in VELEDGER_CORS_ORIGINS."
            )
        return ["*"]

    return origins


async def _api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_json())


def create_app(*, boot_runtime: bool = True) -> FastAPI:
    """Create the FastAPI application.

    boot_runtime:
      - True (default): load chain config and attach app.state.executor
      - False: keep lightweight for unit tests; tests attach their own executor
    """
    configure_structured_logging()
    mode = os.environ.get("VELEDGER_MODE", "prod").strip().lower()

    # Disable docs in production.
    if mode == "prod":
        app = FastAPI(title="veledger API", docs_url=None, redoc_url=None, openapi_url=None)
    else:
        app = FastAPI(title="veledger API")

    app.state.executor = build_executor() if boot_runtime else None

    app.add_exception_handler(ApiError, _api_error_handler)

    # --- Middleware ---
    # Starlette runs the last added middleware first: the request logger
    # wraps everything, then the size limiter fails fast.
    app.add_middleware(RequestSizeLimitMiddleware)
    app.add_middleware(RequestLogMiddleware)

    cors_origins = _parse_cors_origins()
    if cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_credentials=cors_origins != ["*"],
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["Content-Type"],
        )

    # --- Routers ---
    app.include_router(public_router)

    return app
