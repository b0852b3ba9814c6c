from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Callable, Dict, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings
from .container import ApplicationContainer
from .logging import configure_logging
from .security import TokenService
from .utils import utcnow
from ..application.services.account_service import AccountService
from ..application.services.auth_service import AuthService
from ..application.services.crud_service import CrudService
from ..application.services.verification import VerificationCodeWorkflow
from ..domain.models import USER_ENTITY
from ..infrastructure.persistence.sqlite import SQLiteDocumentStore
from ..presentation.api.responses import register_exception_handlers
from ..presentation.api.routers import auth as auth_router
from ..presentation.api.routers import users as users_router
from ..services.email_service import EmailSender, EmailService
from ..services.expiry_sweeper import ExpirySweeper

logger = logging.getLogger(__name__)


def create_application(
    settings: Optional[Settings] = None,
    *,
    email_sender: Optional[EmailSender] = None,
    clock: Callable[[], datetime] = utcnow,
) -> FastAPI:
    settings = settings or Settings()

    app = FastAPI(title="E-shop API", lifespan=_create_lifespan(settings, email_sender, clock))

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)

    app.include_router(auth_router.router)
    app.include_router(users_router.router)

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        container: ApplicationContainer = app.state.container  # type: ignore[attr-defined]
        return {"ok": True, "users": container.users_repository.count()}

    return app


def _create_lifespan(
    settings: Settings,
    email_sender: Optional[EmailSender],
    clock: Callable[[], datetime],
):
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging()
        if settings.jwt_secret == "change-me":
            logger.warning("JWT_SECRET is not set; using the insecure development default.")
        store = SQLiteDocumentStore(settings.database_path)
        users_repository = store.collection(USER_ENTITY)
        user_service = CrudService(
            users_repository,
            resolver=store.get,
            default_limit=settings.default_page_limit,
        )
        email_service = email_sender or EmailService(
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            smtp_username=settings.smtp_username,
            smtp_password=settings.smtp_password,
            from_email=settings.smtp_from_email,
            from_name=settings.smtp_from_name,
        )
        tokens = TokenService(
            settings.jwt_secret,
            algorithm=settings.jwt_algorithm,
            expiration_hours=settings.jwt_expiration_hours,
        )
        verification = VerificationCodeWorkflow(
            users_repository,
            email_service,
            ttl_minutes=settings.verification_code_minutes,
            clock=clock,
        )
        auth_service = AuthService(user_service, users_repository, verification, tokens)
        account_service = AccountService(user_service, users_repository, verification)
        expiry_sweeper = ExpirySweeper(
            users_repository,
            interval_seconds=settings.expiry_sweep_seconds,
            clock=clock,
        )

        auth_service.ensure_default_admin(settings.admin_default_email, settings.admin_default_password)

        app.state.container = ApplicationContainer(  # type: ignore[attr-defined]
            settings=settings,
            store=store,
            users_repository=users_repository,
            user_service=user_service,
            email_service=email_service,
            tokens=tokens,
            verification=verification,
            auth_service=auth_service,
            account_service=account_service,
            expiry_sweeper=expiry_sweeper,
        )

        await expiry_sweeper.start()
        logger.info("E-shop API started with database %s", settings.database_path)
        try:
            yield
        finally:
            await expiry_sweeper.stop()
            store.close()

    return lifespan
