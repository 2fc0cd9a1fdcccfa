"""Admin policy settings API routes."""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from filehub.database import get_db
from filehub.deps import require_admin
from filehub.schemas.setting import PolicySettingsResponse, PolicySettingsUpdate
from filehub.services.access import Principal
from filehub.services.policy_config import PolicyConfig, load_policy, save_policy_values

router = APIRouter(prefix="/api/admin/settings", tags=["settings"])


@router.get("", response_model=PolicySettingsResponse)
async def get_settings(
    principal: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Current upload/access policy (stored values over defaults)."""
    return _to_response(await load_policy(db))


@router.put("", response_model=PolicySettingsResponse)
async def update_settings(
    body: PolicySettingsUpdate,
    principal: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Update policy settings. Only provided fields are updated."""
    update_data = body.model_dump(exclude_unset=True, exclude_none=True)
    if not update_data:
        raise HTTPException(status_code=400, detail="No updates provided")
    try:
        config = await save_policy_values(db, update_data)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _to_response(config)


def _to_response(config: PolicyConfig) -> PolicySettingsResponse:
    """Convert policy snapshot to response model."""
    return PolicySettingsResponse(
        allowed_extensions=sorted(config.allowed_extensions),
        max_file_size=config.max_file_size,
        allowed_tags=sorted(config.allowed_tags),
        anonymous_upload=config.anonymous_upload,
        anonymous_preview=config.anonymous_preview,
        anonymous_download=config.anonymous_download,
        export_marker_tag=config.export_marker_tag,
    )
