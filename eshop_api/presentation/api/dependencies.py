from typing import Any, Dict

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ...application.services.query_features import default_projection
from ...core.container import ApplicationContainer
from ...core.dependencies import get_container
from ...core.errors import ApiError, ErrorKind

_bearer_scheme = HTTPBearer(auto_error=False)


def require_user(*roles: str):
    """
    Dependency resolving the authenticated user from a Bearer JWT.

    When ``roles`` are given the user must hold one of them.
    """

    def dependency(
        credentials: HTTPAuthorizationCredentials = Depends(_bearer_scheme),
        container: ApplicationContainer = Depends(get_container),
    ) -> Dict[str, Any]:
        if credentials is None or credentials.scheme.lower() != "bearer":
            raise ApiError("No token provided - please login", ErrorKind.UNAUTHORIZED)
        payload = container.tokens.decode_token(credentials.credentials)
        if not payload or not payload.get("id"):
            raise ApiError("Invalid token", ErrorKind.UNAUTHORIZED)

        repository = container.users_repository
        user = repository.find_by_id(str(payload["id"]), include_hidden=True)
        if user is None:
            raise ApiError("The user that belongs to this token no longer exists", ErrorKind.UNAUTHORIZED)

        changed_at = user.get("password_changed_at")
        # JWT iat has whole-second precision
        if changed_at is not None and int(changed_at.timestamp()) > int(payload.get("iat", 0)):
            raise ApiError("Password changed - please login", ErrorKind.UNAUTHORIZED)
        if not user.get("email_verified"):
            raise ApiError("Email must be verified to access this resource", ErrorKind.FORBIDDEN)
        if roles and user.get("role") not in roles:
            raise ApiError("You are not allowed to access this route", ErrorKind.FORBIDDEN)
        return default_projection(repository.descriptor, user)

    return dependency


get_current_user = require_user()
require_admin_user = require_user("admin")
