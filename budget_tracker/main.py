import logging

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import IntegrityError, DataError

# Import all models to ensure Base.metadata is populated
from budget_tracker import models  # noqa: F401

from budget_tracker.api.v1.router import api_router
from budget_tracker.core.config import settings
from budget_tracker.core.exceptions import (
    AuthorizationError,
    ImmutableRecordError,
    NotFoundError,
    ValidationError,
    ViolationWarning,
)
from budget_tracker.db.immutability import register_immutability_listeners
from budget_tracker.db.init_db import init_database
from budget_tracker.db.session import engine
from budget_tracker.services.availability_cache import get_availability_cache

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def create_app() -> FastAPI:
    tags_metadata = [
        {"name": "funds", "description": "Funds of every type, their totals and auto-calculation mode"},
        {"name": "breakdowns", "description": "Sub-allocations of a fund, availability and violation checks"},
        {"name": "activities", "description": "Append-only activity trail per fund family"},
        {"name": "implementing-agencies", "description": "Implementing office registry lookup"},
    ]

    configure_logging()
    try:
        settings.validate_security()
    except ValueError as e:
        logger.warning("[SECURITY WARNING] %s", e)

    register_immutability_listeners()

    app = FastAPI(
        title="Budget Tracker",
        version="1.0.0",
        description="Hierarchical budget consistency engine for government fund allocations",
        openapi_url="/openapi.json",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_tags=tags_metadata,
        redirect_slashes=False,
    )

    @app.exception_handler(ValidationError)
    async def domain_validation_handler(request: Request, exc: ValidationError):
        return JSONResponse(
            status_code=422,
            content={"detail": "Validation failed", "errors": exc.errors},
        )

    @app.exception_handler(ViolationWarning)
    async def violation_warning_handler(request: Request, exc: ViolationWarning):
        """Budget exceedance: the client may resubmit with confirm_violations=true"""
        return JSONResponse(
            status_code=409,
            content={"detail": str(exc), "report": exc.report.model_dump(mode="json")},
        )

    @app.exception_handler(AuthorizationError)
    async def authorization_error_handler(request: Request, exc: AuthorizationError):
        return JSONResponse(status_code=403, content={"detail": str(exc)})

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(ImmutableRecordError)
    async def immutable_record_handler(request: Request, exc: ImmutableRecordError):
        logger.error("Attempted to modify activity history at %s: %s", request.url.path, exc)
        return JSONResponse(status_code=500, content={"detail": "Activity history cannot be modified."})

    @app.exception_handler(IntegrityError)
    async def integrity_error_handler(request: Request, exc: IntegrityError):
        """Handle database integrity errors (unique constraints, foreign keys)"""
        error_msg = str(exc.orig) if exc.orig else str(exc)
        if "unique" in error_msg.lower():
            detail = "The record already exists."
            status_code = 409
        elif "foreign key" in error_msg.lower():
            detail = "The operation conflicts with related records."
            status_code = 400
        else:
            detail = "Database error."
            status_code = 400

        logger.warning("Integrity error at %s: %s - %s", request.url.path, detail, error_msg)
        return JSONResponse(status_code=status_code, content={"detail": detail})

    @app.exception_handler(DataError)
    async def data_error_handler(request: Request, exc: DataError):
        """Handle database data errors (invalid types, values too long)"""
        return JSONResponse(
            status_code=400,
            content={"detail": "Invalid data (wrong type or value too long)."},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Flatten pydantic errors into field -> message pairs"""
        errors = {}
        for error in exc.errors():
            field = ".".join(str(x) for x in error["loc"] if x != "body")
            errors[field] = error["msg"]
        return JSONResponse(
            status_code=422,
            content={"detail": "Validation failed", "errors": errors},
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH", "HEAD"],
        allow_headers=["*"],
        max_age=3600,
    )

    @app.on_event("startup")
    async def on_startup() -> None:
        await init_database(engine)

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        await get_availability_cache().close()
        await engine.dispose()

    def custom_openapi():
        if app.openapi_schema:
            return app.openapi_schema
        openapi_schema = get_openapi(
            title=app.title,
            version=app.version,
            description=app.description,
            routes=app.routes,
        )
        openapi_schema.setdefault("components", {}).setdefault("securitySchemes", {}).update({
            "bearerAuth": {
                "type": "http",
                "scheme": "bearer",
                "bearerFormat": "JWT",
            }
        })
        openapi_schema["security"] = [{"bearerAuth": []}]
        app.openapi_schema = openapi_schema
        return app.openapi_schema

    app.openapi = custom_openapi  # type: ignore[assignment]

    app.include_router(api_router, prefix=settings.API_V1_STR)

    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "message": "Budget Tracker is running"}

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
