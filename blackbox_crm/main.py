from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from blackbox_crm.core.observability import (
    http_exception_handler,
    log_event,
    request_logging_middleware,
    setup_observability,
    unhandled_exception_handler,
    validation_exception_handler,
)
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from blackbox_crm.core.config import settings
from blackbox_crm.db.session import engine
from blackbox_crm.routers import auth, contacts, dashboard, invoices, messages, pipelines, pricing

app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    description=(
        "Backend API for BlackBox CRM.\n\n"
        "Swagger quick test flow:\n"
        "1. Call `POST /auth/register` or `POST /auth/login`.\n"
        "2. Click **Authorize** and use your email/username + password "
        "(OAuth token URL: `/auth/token`).\n"
        "3. Test protected endpoints (`/contacts`, `/pipelines`, `/invoices`, `/dashboard`)."
    ),
    swagger_ui_parameters={
        "persistAuthorization": True,
        "displayRequestDuration": True,
        "defaultModelsExpandDepth": 1,
    },
    openapi_tags=[
        {"name": "health", "description": "Service status and quick links."},
        {"name": "auth", "description": "User registration, login and profile."},
        {"name": "contacts", "description": "Contact records with search and ranking."},
        {"name": "pipelines", "description": "Sales deals, their funnel status and the status board."},
        {"name": "invoices", "description": "Invoices, PDF export and share links."},
        {"name": "messages", "description": "Inbox of recorded messages."},
        {"name": "dashboard", "description": "Period-over-period sales metrics and summary."},
        {"name": "pricing", "description": "Subscription plans and custom quotes."},
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

app.include_router(auth.router)
app.include_router(contacts.router)
app.include_router(pipelines.router)
app.include_router(invoices.router)
app.include_router(messages.router)
app.include_router(dashboard.router)
app.include_router(pricing.router)


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
    except SQLAlchemyError as exc:
        log_event("readiness_check_failed", error=str(exc))
        return {"ok": False}
    return {"ok": True}
