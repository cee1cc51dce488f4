from __future__ import annotations

import logging
import time
from uuid import uuid4

from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.openapi.docs import get_swagger_ui_html
from fastapi.openapi.utils import get_openapi
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from reduct.apps.api.errors import (
    http_exception_handler,
    reduct_exception_handler,
    starlette_http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from reduct.apps.api.response import API_VERSION
from reduct.apps.api.routes.ai import router as ai_router
from reduct.apps.api.routes.ai_content import router as ai_content_router
from reduct.apps.api.routes.ai_registry import router as ai_registry_router
from reduct.apps.api.routes.auth import router as auth_router
from reduct.apps.api.routes.billing import router as billing_router
from reduct.apps.api.routes.billing_admin import router as billing_admin_router
from reduct.apps.api.routes.credits import router as credits_router
from reduct.apps.api.routes.health import router as health_router
from reduct.apps.api.routes.i18n import router as i18n_router
from reduct.apps.api.routes.pricing import router as pricing_router
from reduct.apps.api.routes.roles import router as roles_router
from reduct.apps.api.routes.security import router as security_router
from reduct.apps.api.routes.tenants import router as tenants_router
from reduct.apps.api.routes.users import router as users_router
from reduct.core.config import get_settings
from reduct.core.errors import ReductError
from reduct.core.logging import bind_request_context, configure_logging


logger = logging.getLogger(__name__)

# Router groups per deployable service; ENABLED_SERVICES picks which ones mount.
SERVICE_ROUTERS: dict[str, tuple[APIRouter, ...]] = {
    "auth": (auth_router,),
    "users": (users_router, roles_router),
    "ai": (ai_router, ai_content_router, ai_registry_router),
    "billing": (billing_router, billing_admin_router),
    "credits": (credits_router,),
    "i18n": (i18n_router,),
    "security": (security_router,),
    "pricing": (pricing_router,),
    "tenants": (tenants_router,),
}
_PUBLIC_PATHS = {
    "/v1/health",
    "/v1/auth/send-verification-code",
    "/v1/auth/verify-code",
    "/v1/auth/check-email",
    "/v1/auth/reset-password",
    "/v1/auth/register",
    "/v1/auth/login",
    "/v1/billing/plans",
    "/v1/billing/plan-prices",
    "/v1/i18n/languages",
    "/v1/i18n/bundle/{language_code}/{namespace}",
}


def create_app() -> FastAPI:
    configure_logging()
    settings = get_settings()
    app = FastAPI(title="Reduct API")

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        bind_request_context(request_id=request_id)
        start = time.monotonic()
        response = await call_next(request)
        latency_ms = (time.monotonic() - start) * 1000.0
        logger.info(
            "request_completed method=%s path=%s status=%s latency_ms=%.1f request_id=%s",
            request.method,
            request.url.path,
            response.status_code,
            latency_ms,
            request_id,
        )
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def _starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await starlette_http_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(ReductError)
    async def _reduct_exception_handler(request: Request, exc: ReductError):
        return await reduct_exception_handler(request, exc)

    app.include_router(health_router, prefix=f"/{API_VERSION}")
    enabled = settings.enabled_service_set()
    for service_name, routers in SERVICE_ROUTERS.items():
        if service_name not in enabled:
            continue
        for router in routers:
            app.include_router(router, prefix=f"/{API_VERSION}")
    logger.info("api_services_mounted services=%s", ",".join(sorted(enabled)))

    @app.get("/v1/openapi.json", include_in_schema=False)
    async def openapi_json() -> JSONResponse:
        return JSONResponse(app.openapi())

    @app.get("/v1/docs", include_in_schema=False)
    async def v1_docs() -> HTMLResponse:
        return get_swagger_ui_html(openapi_url="/v1/openapi.json", title="Reduct API v1")

    @app.get("/docs", include_in_schema=False)
    async def docs_redirect() -> RedirectResponse:
        return RedirectResponse(url="/v1/docs")

    def custom_openapi() -> dict:
        # Inject bearer auth and version metadata into the OpenAPI schema.
        if app.openapi_schema:
            return app.openapi_schema
        schema = get_openapi(title="Reduct API", version=API_VERSION, routes=app.routes)
        components = schema.setdefault("components", {})
        security_schemes = components.setdefault("securitySchemes", {})
        security_schemes["BearerAuth"] = {"type": "http", "scheme": "bearer"}
        for path, operations in schema.get("paths", {}).items():
            if path in _PUBLIC_PATHS:
                continue
            for operation in operations.values():
                operation.setdefault("security", [{"BearerAuth": []}])
        app.openapi_schema = schema
        return app.openapi_schema

    app.openapi = custom_openapi

    return app


app = create_app()
