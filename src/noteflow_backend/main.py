from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager
from typing import cast

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import Response
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from noteflow_backend.config import settings
from noteflow_backend.db import dispose_engine_cache
from noteflow_backend.error_handlers import register_error_handlers
from noteflow_backend.routers import sync as sync_router


class RequestIdMiddleware:
    """Accept ``X-Request-Id`` from the client (or mint one) and echo it back."""

    def __init__(self, app: ASGIApp) -> None:
        self.app: ASGIApp = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        header_value: bytes | None = None
        for key, value in cast(list[tuple[bytes, bytes]], scope.get("headers") or []):
            if key.lower() == b"x-request-id":
                header_value = value.strip() or None
                break

        if header_value is None:
            request_id = str(uuid.uuid4())
            header_value = request_id.encode("ascii")
        else:
            # latin-1 is a 1-1 mapping for bytes -> str.
            request_id = header_value.decode("latin-1")

        scope.setdefault("state", {})["request_id"] = request_id
        echoed = header_value

        async def send_wrapper(message: Message) -> None:
            if message.get("type") == "http.response.start":
                headers = cast(list[tuple[bytes, bytes]], message.get("headers", []))
                headers = [(k, v) for (k, v) in headers if k.lower() != b"x-request-id"]
                headers.append((b"x-request-id", echoed))
                message["headers"] = headers
            await send(message)

        await self.app(scope, receive, send_wrapper)


@asynccontextmanager
async def _lifespan(_app: FastAPI):
    yield
    # Ensure sqlite/aiosqlite worker threads don't keep the process alive.
    dispose_engine_cache()


app = FastAPI(title=settings.app_name, lifespan=_lifespan)

app.add_middleware(RequestIdMiddleware)
register_error_handlers(app)


logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))

logger = logging.getLogger(__name__)
for msg in settings.security_warnings():
    logger.warning("SECURITY WARNING: %s", msg)


@app.middleware("http")
async def sync_access_log_middleware(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    started = time.perf_counter()
    response = await call_next(request)

    if request.url.path.startswith(f"{settings.api_prefix.rstrip('/')}/sync"):
        logger.info(
            "sync request request_id=%s user_id=%s method=%s path=%s status=%s elapsed_ms=%.1f",
            getattr(request.state, "request_id", None),
            getattr(request.state, "auth_user_id", None),
            request.method,
            request.url.path,
            response.status_code,
            (time.perf_counter() - started) * 1000,
        )
    return response


origins = settings.cors_origins_list()
if origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        # Bearer auth only; no cookies cross-origin.
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-Id"],
    )


@app.get("/health")
def health():
    return {"ok": True}


app.include_router(sync_router.router, prefix=settings.api_prefix)
