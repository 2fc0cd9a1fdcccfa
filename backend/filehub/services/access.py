"""Access control decisions for file records.

Everything here is a pure function of (principal, record, policy). Nothing
touches the database or the content store, so the same predicates back both
the SQL listing filter in the catalog and the per-record checks in the file
service.

The visibility rule (public / owner / super_admin bypass) and the anonymous
gates (configurable per operation) are evaluated independently and combined
only in `authorize`.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from filehub.models.file_record import FileRecord, PRIVATE
from filehub.services.errors import (
    AuthenticationRequired,
    Forbidden,
    InvalidTag,
    NotFound,
)
from filehub.services.policy_config import PolicyConfig


class Role(str, Enum):
    ANONYMOUS = "anonymous"
    USER = "user"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


class Operation(str, Enum):
    READ = "read"
    DOWNLOAD = "download"
    PREVIEW = "preview"
    TOGGLE_VISIBILITY = "toggle_visibility"
    DELETE = "delete"
    RETAG = "retag"


# Operations that change a record; always need an authenticated owner or super_admin
MANAGE_OPERATIONS = frozenset({Operation.TOGGLE_VISIBILITY, Operation.DELETE, Operation.RETAG})


@dataclass(frozen=True)
class Principal:
    """The actor performing an operation."""

    id: Optional[str] = None
    role: Role = Role.ANONYMOUS

    @classmethod
    def anonymous(cls) -> "Principal":
        return cls()


ANONYMOUS = Principal.anonymous()


# ── Predicates ───────────────────────────────────────────────────

def is_authenticated(principal: Principal) -> bool:
    return principal.role != Role.ANONYMOUS and principal.id is not None


def is_super_admin(principal: Principal) -> bool:
    return is_authenticated(principal) and principal.role == Role.SUPER_ADMIN


def is_admin(principal: Principal) -> bool:
    return is_authenticated(principal) and principal.role in (Role.ADMIN, Role.SUPER_ADMIN)


def owns(principal: Principal, record: FileRecord) -> bool:
    return (
        is_authenticated(principal)
        and record.owner_id is not None
        and record.owner_id == principal.id
    )


def can_see(principal: Principal, record: FileRecord) -> bool:
    """Visibility rule shared by listing, metadata reads and downloads."""
    return record.is_public or owns(principal, record) or is_super_admin(principal)


def can_manage(principal: Principal, record: FileRecord) -> bool:
    return owns(principal, record) or is_super_admin(principal)


def anonymous_allowed(operation: Operation, config: PolicyConfig) -> bool:
    """Whether an unauthenticated principal may attempt `operation` at all."""
    if operation == Operation.DOWNLOAD:
        return config.anonymous_download
    if operation == Operation.PREVIEW:
        return config.anonymous_preview
    if operation in MANAGE_OPERATIONS:
        return False
    return True


def invalid_tags(tags: Iterable[str], config: PolicyConfig) -> list[str]:
    return [t for t in tags if t not in config.allowed_tags]


# ── Decisions ────────────────────────────────────────────────────

def validate_tags(tags: Iterable[str], config: PolicyConfig) -> None:
    """Raise InvalidTag unless every tag is in the current vocabulary.

    Only the proposed set is checked; tags already stored on a record that
    have since left the vocabulary are not re-validated.
    """
    bad = invalid_tags(tags, config)
    if bad:
        raise InvalidTag(bad)


def check_anonymous_gate(principal: Principal, operation: Operation, config: PolicyConfig) -> None:
    if is_authenticated(principal):
        return
    if not anonymous_allowed(operation, config):
        if operation == Operation.PREVIEW:
            raise AuthenticationRequired("Anonymous preview is disabled. Please login.")
        if operation == Operation.DOWNLOAD:
            raise AuthenticationRequired("Anonymous download is disabled. Please login.")
        raise AuthenticationRequired("Login required")


def authorize(
    principal: Principal,
    record: Optional[FileRecord],
    operation: Operation,
    config: PolicyConfig,
    proposed_tags: Optional[Iterable[str]] = None,
) -> None:
    """Raise the matching error unless `principal` may perform `operation` on `record`."""
    if record is None:
        raise NotFound("File not found")

    check_anonymous_gate(principal, operation, config)

    if operation in MANAGE_OPERATIONS:
        if not can_manage(principal, record):
            raise Forbidden("Unauthorized")
    elif not can_see(principal, record):
        raise Forbidden("Unauthorized access to private file")

    if operation == Operation.RETAG:
        validate_tags(proposed_tags or (), config)


def authorize_upload(principal: Principal, config: PolicyConfig, visibility: str) -> None:
    if not is_authenticated(principal):
        if not config.anonymous_upload:
            raise AuthenticationRequired("Anonymous upload is disabled. Please login.")
        if visibility == PRIVATE:
            raise AuthenticationRequired("You must be logged in to upload private files")
