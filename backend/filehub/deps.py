"""Request-scoped dependencies: principal resolution and service wiring.

Users log in elsewhere and present a signed JWT, either as
`Authorization: Bearer <token>` or, for download/preview links that a browser
opens directly, as `?token=<token>`. A missing, expired or tampered token
makes the caller anonymous; it never fails the request by itself.

Deployments behind a gateway that already authenticated the user can opt into
`HeaderPrincipalResolver` with TRUST_IDENTITY_HEADERS.
"""
import logging
from typing import Optional, Protocol

import jwt
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from filehub.config import settings
from filehub.database import get_db
from filehub.services.access import ANONYMOUS, Principal, Role, is_admin, is_authenticated
from filehub.services.content_store import ContentStore, create_content_store
from filehub.services.errors import AuthenticationRequired, Forbidden
from filehub.services.file_service import FileService

logger = logging.getLogger(__name__)

USER_ID_HEADER = "X-User-Id"
USER_ROLE_HEADER = "X-User-Role"

TOKEN_QUERY_PARAM = "token"
# Only link-style endpoints accept the token in the query string
QUERY_TOKEN_PATHS = ("/api/files/download/",)


class PrincipalResolver(Protocol):
    def resolve(self, request: Request) -> Principal:
        ...


def principal_for(user_id, raw_role: Optional[str]) -> Principal:
    """Build a principal from an id and role name; anything unusable is anonymous."""
    user_id = str(user_id).strip() if user_id is not None else ""
    if not user_id:
        return ANONYMOUS
    raw_role = (raw_role or Role.USER.value).strip().lower()
    try:
        role = Role(raw_role)
    except ValueError:
        logger.warning(f"Ignoring unknown role {raw_role!r} for user {user_id!r}")
        return ANONYMOUS
    if role == Role.ANONYMOUS:
        return ANONYMOUS
    return Principal(id=user_id, role=role)


class BearerTokenResolver:
    """Verifies HMAC-signed JWTs carrying `id` (or `sub`) and `role` claims."""

    def __init__(self, secret: str, algorithm: str = "HS256"):
        self.secret = secret
        self.algorithm = algorithm

    def _extract_token(self, request: Request) -> Optional[str]:
        auth_header = request.headers.get("Authorization")
        if auth_header:
            parts = auth_header.split()
            if len(parts) == 2 and parts[0].lower() == "bearer":
                return parts[1]
            return None
        if request.url.path.startswith(QUERY_TOKEN_PATHS):
            return request.query_params.get(TOKEN_QUERY_PARAM) or None
        return None

    def resolve(self, request: Request) -> Principal:
        token = self._extract_token(request)
        if not token or not self.secret:
            return ANONYMOUS
        try:
            payload = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            logger.info(f"Expired token on {request.url.path}")
            return ANONYMOUS
        except jwt.InvalidTokenError as e:
            logger.warning(f"Invalid token on {request.url.path}: {e}")
            return ANONYMOUS
        user_id = payload.get("id", payload.get("sub"))
        return principal_for(user_id, payload.get("role"))


class HeaderPrincipalResolver:
    """Reads `X-User-Id` / `X-User-Role` set by a trusted gateway."""

    def resolve(self, request: Request) -> Principal:
        return principal_for(
            request.headers.get(USER_ID_HEADER),
            request.headers.get(USER_ROLE_HEADER),
        )


def create_principal_resolver() -> PrincipalResolver:
    if settings.TRUST_IDENTITY_HEADERS:
        logger.warning("Trusting X-User-Id / X-User-Role headers for identity")
        return HeaderPrincipalResolver()
    if not settings.JWT_SECRET:
        logger.warning("JWT_SECRET is not set; every request is anonymous")
    return BearerTokenResolver(settings.JWT_SECRET, settings.JWT_ALGORITHM)


_content_store: Optional[ContentStore] = None


def get_content_store() -> ContentStore:
    global _content_store
    if _content_store is None:
        _content_store = create_content_store()
    return _content_store


def get_principal(request: Request) -> Principal:
    resolver = getattr(request.app.state, "principal_resolver", None)
    if resolver is None:
        resolver = BearerTokenResolver(settings.JWT_SECRET, settings.JWT_ALGORITHM)
    return resolver.resolve(request)


def require_principal(principal: Principal = Depends(get_principal)) -> Principal:
    if not is_authenticated(principal):
        raise AuthenticationRequired("Login required")
    return principal


def require_admin(principal: Principal = Depends(require_principal)) -> Principal:
    if not is_admin(principal):
        raise Forbidden("Admin access required")
    return principal


def get_file_service(
    db: AsyncSession = Depends(get_db),
    store: ContentStore = Depends(get_content_store),
) -> FileService:
    return FileService(db, store)
