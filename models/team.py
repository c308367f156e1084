"""
Team resource models
Request bodies for the team-scoped CRUD routes
"""
import datetime as dt
from enum import IntEnum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class RecordStatus(IntEnum):
    """Shared status codes for suppliers and shops"""
    DISABLED = 0
    ACTIVE = 1
    BLOCKED = 2
    PENDING = 3
    SPARE = 4


class BrandCreate(BaseModel):
    order: int = Field(default=0, ge=0)
    name: str = Field(..., min_length=1, max_length=50)
    description: Optional[str] = Field(default=None, max_length=255)


class BrandUpdate(BaseModel):
    order: Optional[int] = Field(default=None, ge=0)
    name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    description: Optional[str] = Field(default=None, max_length=255)

    @model_validator(mode="after")
    def require_field(self) -> "BrandUpdate":
        if not self.model_fields_set:
            raise ValueError("No fields to update")
        return self


class SupplierContact(BaseModel):
    model_config = ConfigDict(extra="allow")

    phone: Optional[str] = None
    contact_person: Optional[str] = None
    address: Optional[str] = None


class SupplierCreate(BaseModel):
    order: int = Field(default=0, ge=0)
    name: str = Field(..., min_length=1, max_length=100)
    contact: Optional[SupplierContact] = None
    status: RecordStatus = RecordStatus.ACTIVE
    level: Optional[str] = Field(default=None, max_length=30)
    type: Optional[str] = Field(default=None, max_length=30)
    remark: Optional[str] = None


class SupplierUpdate(BaseModel):
    order: Optional[int] = Field(default=None, ge=0)
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    contact: Optional[SupplierContact] = None
    status: Optional[RecordStatus] = None
    level: Optional[str] = Field(default=None, max_length=30)
    type: Optional[str] = Field(default=None, max_length=30)
    remark: Optional[str] = None

    @model_validator(mode="after")
    def require_field(self) -> "SupplierUpdate":
        if not self.model_fields_set:
            raise ValueError("No fields to update")
        return self


class ShopCreate(BaseModel):
    unionid: Optional[str] = Field(default=None, max_length=64)
    openid: Optional[str] = Field(default=None, max_length=64)
    account_no: Optional[str] = Field(default=None, max_length=50)
    wechat: Optional[str] = Field(default=None, max_length=64)
    avatar: Optional[str] = Field(default=None, max_length=255)
    nickname: Optional[str] = Field(default=None, max_length=50)
    phone: Optional[str] = Field(default=None, max_length=20)
    status: RecordStatus = RecordStatus.ACTIVE
    remark: Optional[str] = None


class ShopUpdate(ShopCreate):
    status: Optional[RecordStatus] = None  # type: ignore[assignment]

    @model_validator(mode="after")
    def require_field(self) -> "ShopUpdate":
        if not self.model_fields_set:
            raise ValueError("No fields to update")
        return self


class FollowerGrowthEntry(BaseModel):
    shop_id: int = Field(..., gt=0)
    date: dt.date
    total: int = Field(..., ge=0)
    deducted: int = Field(default=0, ge=0)
    daily_increase: int = 0


def update_columns(model: BaseModel) -> Dict[str, Any]:
    """Fields explicitly sent by the client, ready for an UPDATE statement."""
    return model.model_dump(exclude_unset=True, mode="json")
