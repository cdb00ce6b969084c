from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from churchdesk.core.observability import (
    http_exception_handler,
    request_logging_middleware,
    setup_observability,
    unhandled_exception_handler,
    validation_exception_handler,
)
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from churchdesk.core.config import settings
from churchdesk.db.session import engine
from churchdesk.routers import automation

app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    description=(
        "Automation execution engine for church management.\n\n"
        "Swagger quick test flow:\n"
        "1. Call `POST /automations/dispatch` with `automation_id` and `person_id` "
        "(send `X-Automation-Secret` when a dispatch secret is configured).\n"
        "2. Inspect the run and its step log with `GET /automations/runs/{run_id}`.\n"
        "3. Flush queued WhatsApp messages with `POST /automations/outbox/deliver`."
    ),
    swagger_ui_parameters={
        "displayRequestDuration": True,
        "defaultModelsExpandDepth": 1,
    },
    openapi_tags=[
        {"name": "health", "description": "Service status and quick links."},
        {
            "name": "automation",
            "description": "Trigger dispatch, automation run logs, and WhatsApp message delivery.",
        },
    ],
)

setup_observability()
app.middleware("http")(request_logging_middleware)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

cors_origins = settings.cors_origins or ["http://localhost:3000"]
allow_all_origins = "*" in cors_origins
env_value = settings.env.lower().strip()
allow_origin_regex = settings.cors_origin_regex

if (
    not allow_origin_regex
    and env_value in {"dev", "development", "staging", "stage"}
):
    allow_origin_regex = r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$"

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if allow_all_origins else cors_origins,
    allow_origin_regex=allow_origin_regex,
    allow_credentials=not allow_all_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(automation.router)


@app.get("/", tags=["health"])
def root():
    return {
        "app": settings.app_name,
        "docs": "/docs",
        "redoc": "/redoc",
        "health": "/health",
        "ready": "/ready",
    }


@app.get("/health", tags=["health"])
def health():
    return {"ok": True}


@app.get("/ready", tags=["health"])
def ready():
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError:
        return {"ok": False}
    return {"ok": True}
