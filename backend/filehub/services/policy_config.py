"""Runtime upload/access policy read from the settings table.

Admins change these values through /api/admin/settings while the service is
running, so callers load a fresh PolicyConfig for every operation instead of
caching one at startup. Missing keys fall back to the environment defaults in
filehub.config.
"""
import logging

from pydantic import BaseModel, field_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from filehub.config import settings as app_settings
from filehub.models.setting import Setting

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"true", "1", "yes", "on"}

# Keys admins may store in the settings table
POLICY_KEYS = (
    "allowed_extensions",
    "max_file_size",
    "allowed_tags",
    "anonymous_upload",
    "anonymous_preview",
    "anonymous_download",
    "export_marker_tag",
)


def _split_csv(value) -> list[str]:
    if isinstance(value, str):
        value = value.split(",")
    return [v.strip() for v in value if v and v.strip()]


def _normalize_extension(ext: str) -> str:
    ext = ext.strip().lower()
    if ext and not ext.startswith("."):
        ext = "." + ext
    return ext


class PolicyConfig(BaseModel):
    """Immutable snapshot of the policy in force for one operation."""

    model_config = {"frozen": True}

    allowed_extensions: frozenset[str]
    max_file_size: int = 0
    allowed_tags: frozenset[str]
    anonymous_upload: bool = False
    anonymous_preview: bool = False
    anonymous_download: bool = False
    export_marker_tag: str = "dr2"

    @field_validator("allowed_extensions", mode="before")
    @classmethod
    def _parse_extensions(cls, value):
        return frozenset(_normalize_extension(e) for e in _split_csv(value))

    @field_validator("allowed_tags", mode="before")
    @classmethod
    def _parse_tags(cls, value):
        return frozenset(_split_csv(value))

    @field_validator("anonymous_upload", "anonymous_preview", "anonymous_download", mode="before")
    @classmethod
    def _parse_flag(cls, value):
        if isinstance(value, str):
            return value.strip().lower() in _TRUE_VALUES
        return bool(value)

    @field_validator("max_file_size", mode="before")
    @classmethod
    def _parse_size(cls, value):
        if value is None or value == "":
            return 0
        return max(0, int(value))

    def to_settings(self) -> dict[str, str]:
        """Render as the string values stored in the settings table."""
        return {
            "allowed_extensions": ",".join(sorted(self.allowed_extensions)),
            "max_file_size": str(self.max_file_size),
            "allowed_tags": ",".join(sorted(self.allowed_tags)),
            "anonymous_upload": str(self.anonymous_upload).lower(),
            "anonymous_preview": str(self.anonymous_preview).lower(),
            "anonymous_download": str(self.anonymous_download).lower(),
            "export_marker_tag": self.export_marker_tag,
        }


def default_policy_values() -> dict:
    return {
        "allowed_extensions": app_settings.DEFAULT_ALLOWED_EXTENSIONS,
        "max_file_size": app_settings.DEFAULT_MAX_FILE_SIZE,
        "allowed_tags": app_settings.DEFAULT_ALLOWED_TAGS,
        "anonymous_upload": app_settings.DEFAULT_ANONYMOUS_UPLOAD,
        "anonymous_preview": app_settings.DEFAULT_ANONYMOUS_PREVIEW,
        "anonymous_download": app_settings.DEFAULT_ANONYMOUS_DOWNLOAD,
        "export_marker_tag": app_settings.DEFAULT_EXPORT_MARKER_TAG,
    }


async def load_policy(db: AsyncSession) -> PolicyConfig:
    """Build the current PolicyConfig from defaults overlaid with stored rows."""
    values = default_policy_values()
    result = await db.execute(select(Setting).where(Setting.key.in_(POLICY_KEYS)))
    for row in result.scalars().all():
        values[row.key] = row.value
    return PolicyConfig(**values)


async def save_policy_values(db: AsyncSession, updates: dict) -> PolicyConfig:
    """Upsert the given policy keys and return the resulting config.

    Values are validated by building a PolicyConfig before anything is
    written, so a bad value leaves the stored policy untouched.
    """
    unknown = set(updates) - set(POLICY_KEYS)
    if unknown:
        raise ValueError(f"Unknown setting keys: {', '.join(sorted(unknown))}")

    current = (await load_policy(db)).to_settings()
    candidate = PolicyConfig(**{**current, **updates})
    rendered = candidate.to_settings()

    for key in updates:
        row = await db.get(Setting, key)
        if row is None:
            db.add(Setting(key=key, value=rendered[key]))
        else:
            row.value = rendered[key]
    await db.commit()
    logger.info(f"Updated policy settings: {', '.join(sorted(updates))}")
    return candidate
