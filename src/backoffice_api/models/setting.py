"""Global key/value configuration rows."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, String, Text, func
from sqlalchemy.dialects.postgresql import UUID

from backoffice_api.db.base import Base


class SettingTypeEnum(str, Enum):
    """How a setting's text value should be interpreted."""

    BOOLEAN = "boolean"
    NUMBER = "number"
    STRING = "string"
    JSON = "json"


class Setting(Base):
    """Single configuration entry keyed by name."""

    __tablename__ = "settings"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    key = Column(String(255), nullable=False, unique=True, index=True)
    value = Column(Text, nullable=False)
    type = Column(String(16), nullable=False, default=SettingTypeEnum.STRING.value, server_default=SettingTypeEnum.STRING.value)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
