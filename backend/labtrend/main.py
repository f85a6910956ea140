import logging
import time
import uuid

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.trustedhost import TrustedHostMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from .config import settings
from .routers.health import router as health_router
from .routers.imports import router as imports_router


class PHIScrubbedLoggingMiddleware:
    def __init__(self, app: FastAPI) -> None:
        self.app = app
        # Configure basic structured-ish logging
        logging.basicConfig(level=settings.log_level.upper(), format="%(message)s")
        self.logger = logging.getLogger("labtrend.backend")

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            return await self.app(scope, receive, send)

        method = scope.get("method")
        path = scope.get("path")
        start = time.perf_counter()
        status_code_holder = {"status": None}
        request_id_holder = {"rid": None}

        async def send_wrapper(message):
            if message["type"] == "http.response.start":
                status_code_holder["status"] = message.get("status", 0)
                # Read the request id written by RequestIDMiddleware
                for k, v in message.get("headers") or []:
                    if k.decode().lower() == "x-request-id":
                        request_id_holder["rid"] = v.decode()
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            duration_ms = int((time.perf_counter() - start) * 1000)
            # Lab values are PHI: never log headers, bodies or parsed rows
            self.logger.info(
                {
                    "event": "http_request",
                    "method": method,
                    "path": path,
                    "status": status_code_holder["status"],
                    "duration_ms": duration_ms,
                    "request_id": request_id_holder["rid"],
                }
            )


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        response = await call_next(request)
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Referrer-Policy", "no-referrer")
        response.headers.setdefault("Permissions-Policy", "interest-cohort=()")
        return response


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Attach a request ID to each response and propagate incoming X-Request-ID.

    - If the client supplies X-Request-ID, echo it back.
    - Otherwise, generate a UUID4 and set X-Request-ID.
    """

    async def dispatch(self, request, call_next):
        rid = request.headers.get("x-request-id") or uuid.uuid4().hex
        response = await call_next(request)
        response.headers.setdefault("X-Request-ID", rid)
        return response


def create_app() -> FastAPI:
    app = FastAPI(title="Lab Trend API", version=settings.app_version)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins(),
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        max_age=600,
    )

    # Request ID before logging so logs can capture the ID
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(PHIScrubbedLoggingMiddleware)

    app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.trusted_hosts())
    app.add_middleware(SecurityHeadersMiddleware)

    app.include_router(health_router, prefix="/api/v1")
    app.include_router(imports_router, prefix="/api/v1")

    @app.get("/", include_in_schema=False)
    async def root(_: Request) -> Response:
        return Response(status_code=204)

    return app


app = create_app()
