from dataclasses import dataclass

from ..application.services.account_service import AccountService
from ..application.services.auth_service import AuthService
from ..application.services.crud_service import CrudService
from ..application.services.verification import VerificationCodeWorkflow
from ..domain.ports.persistence import DocumentRepository, DocumentStore
from ..services.email_service import EmailSender
from ..services.expiry_sweeper import ExpirySweeper
from .config import Settings
from .security import TokenService


@dataclass(slots=True)
class ApplicationContainer:
    """Dependency registry shared across the FastAPI application lifecycle."""

    settings: Settings
    store: DocumentStore
    users_repository: DocumentRepository
    user_service: CrudService
    email_service: EmailSender
    tokens: TokenService
    verification: VerificationCodeWorkflow
    auth_service: AuthService
    account_service: AccountService
    expiry_sweeper: ExpirySweeper
