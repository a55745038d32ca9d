"""Admin endpoints for the loyalty program settings."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice_api.api.dependencies.security import require_admin_api_key
from backoffice_api.db.session import get_session
from backoffice_api.models.setting import SettingTypeEnum
from backoffice_api.services.settings import (
    InvalidSettingError,
    LoyaltySettingUpdate,
    LoyaltySettingsService,
)


router = APIRouter(prefix="/settings", tags=["settings"])


class SettingEntry(BaseModel):
    value: Any
    type: Optional[SettingTypeEnum] = Field(None, description="boolean, number, string or json")
    description: Optional[str] = None


class LoyaltySettingsResponse(BaseModel):
    settings: Dict[str, SettingEntry]


class LoyaltySettingsUpdateRequest(BaseModel):
    settings: Dict[str, SettingEntry] = Field(..., description="Settings keyed by name")


class LoyaltySettingsUpdateResponse(LoyaltySettingsResponse):
    updated: List[str]


@router.get("/loyalty", response_model=LoyaltySettingsResponse)
async def get_loyalty_settings(db: AsyncSession = Depends(get_session)) -> LoyaltySettingsResponse:
    """Return every loyalty setting, filling defaults for keys never written."""

    described = await LoyaltySettingsService(db).describe()
    return LoyaltySettingsResponse(settings={key: SettingEntry(**entry) for key, entry in described.items()})


@router.post(
    "/loyalty",
    response_model=LoyaltySettingsUpdateResponse,
    dependencies=[Depends(require_admin_api_key)],
)
async def update_loyalty_settings(
    payload: LoyaltySettingsUpdateRequest,
    db: AsyncSession = Depends(get_session),
) -> LoyaltySettingsUpdateResponse:
    service = LoyaltySettingsService(db)
    updates = {
        key: LoyaltySettingUpdate(value=entry.value, type=entry.type, description=entry.description)
        for key, entry in payload.settings.items()
    }
    try:
        updated = await service.update(updates)
    except InvalidSettingError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    await db.commit()

    described = await service.describe()
    return LoyaltySettingsUpdateResponse(
        updated=updated,
        settings={key: SettingEntry(**entry) for key, entry in described.items()},
    )
