"""Policy settings request/response schemas."""
from typing import Optional

from filehub.schemas.base import CamelModel


class PolicySettingsUpdate(CamelModel):
    """Only provided fields are written."""
    allowed_extensions: Optional[str] = None
    max_file_size: Optional[int] = None
    allowed_tags: Optional[str] = None
    anonymous_upload: Optional[bool] = None
    anonymous_preview: Optional[bool] = None
    anonymous_download: Optional[bool] = None
    export_marker_tag: Optional[str] = None


class PolicySettingsResponse(CamelModel):
    allowed_extensions: list[str]
    max_file_size: int
    allowed_tags: list[str]
    anonymous_upload: bool
    anonymous_preview: bool
    anonymous_download: bool
    export_marker_tag: str
