"""FastAPI application for the KAPstone membership billing backend."""
from __future__ import annotations

import logging
import os
from functools import partial
from typing import Mapping, Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import app_context
from .app.billing.config import load_billing_config
from .app.billing.repository import PostgresBillingRepository
from .app.database import connect
from .app.routes.billing import router as billing_router
from .app.services.billing import build_billing_service
from .auth import SupabaseAuthenticator
from .config import load_app_config
from .mail import load_email_config

logger = logging.getLogger(__name__)


def create_app(env: Optional[Mapping[str, str]] = None) -> FastAPI:
    """Build the API; raises ``ConfigurationError`` when required settings are absent."""

    if env is None:
        load_dotenv()
    app_config = load_app_config(env)
    billing_config = load_billing_config(env)
    email_config = load_email_config(env)

    logging.basicConfig(
        level=app_config.log_level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    authenticator = SupabaseAuthenticator(
        jwt_secret=app_config.supabase_jwt_secret,
        audience=app_config.supabase_jwt_audience,
        members=PostgresBillingRepository(),
    )
    app_context.configure(
        get_conn=partial(
            connect,
            app_config.database_url,
            connect_timeout=app_config.db_connect_timeout,
            statement_timeout_ms=app_config.db_statement_timeout_ms,
        ),
        get_current_user=authenticator,
        billing_config=billing_config,
        billing_service=build_billing_service(billing_config, email_config),
    )

    app = FastAPI(title="KAPstone Membership API")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(app_config.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(billing_router)

    logger.info(
        "Billing API configured provider=%s email=%s plans=%s",
        billing_config.provider_name,
        email_config.provider_name,
        ",".join(plan.price_id for plan in billing_config.catalog().plans()),
    )
    return app


if __name__ == "__main__":  # pragma: no cover
    import uvicorn

    uvicorn.run(
        create_app(),
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
    )
