"""
Mailbridge - Functions Service

FastAPI application hosting the serverless functions the SPA calls:
- Mailbox connect flow (Gmail / Outlook) with an encrypted token vault
- Cognito login and the Cognito -> Supabase session bridge
- AI drafting and voice transcription
- Category / rule sync to provider labels, folders and filters
- AI inbox pass that drafts or sends replies to categorised mail
- Super-admin account and billing management
"""

import logging
import os

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from mailbridge.api.errors import register_error_handlers
from mailbridge.api.routes import admin, assistant, cognito, inbox, oauth, sync
from mailbridge.config import get_config
from mailbridge.utils.logger import configure_logging

logger = logging.getLogger(__name__)

CORS_ALLOW_HEADERS = ["authorization", "x-client-info", "apikey", "content-type"]


def create_app(validate_config: bool = True) -> FastAPI:
    """
    Build the FastAPI app.

    Args:
        validate_config: Run Config.validate() on startup (tests turn it off).
            Logging is configured on startup either way.
    """
    app = FastAPI(title="Mailbridge Functions")

    # ------------------------------------------------------------------
    # CORS (browser calls come from the SPA on any origin)
    # ------------------------------------------------------------------
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=CORS_ALLOW_HEADERS,
    )

    register_error_handlers(app)

    for module in (oauth, cognito, assistant, sync, inbox, admin):
        app.include_router(module.router)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.on_event("startup")
    async def startup():
        config = get_config()
        # also covers `uvicorn mailbridge.api.service:app`, which skips main()
        configure_logging(config.LOG_LEVEL, config.LOG_FORMAT)
        if validate_config:
            config.validate()
        logger.info(f"[STARTUP] Mailbridge functions ready (environment={config.ENVIRONMENT})")

    return app


app = create_app()


def main() -> None:
    """Console entry point: configure logging and serve with uvicorn."""
    config = get_config()
    configure_logging(config.LOG_LEVEL, config.LOG_FORMAT)
    uvicorn.run(
        app,
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        log_config=None,
    )


if __name__ == "__main__":
    main()
