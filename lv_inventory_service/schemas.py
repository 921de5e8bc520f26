from typing import Any, Dict, List, Optional
from datetime import datetime, timedelta, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, computed_field, field_validator, model_validator
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Base schema serialized with camelCase keys, as stored upstream"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @model_validator(mode="before")
    @classmethod
    def drop_nulls(cls, data):
        # null fields fall back to their defaults
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value is not None}
        return data


class InventoryItemBase(CamelModel):
    """Editable fields of an inventory item"""
    category: str = Field("", max_length=100, examples=["Cable"])
    sub_category: str = Field("", max_length=100, examples=["Cat6"])
    manufacturer: str = Field("", max_length=100, examples=["Belden"])
    part_number: str = Field("", max_length=100, examples=["2412-010-1000"])
    description: str = Field("", max_length=1000, examples=["Cat6 plenum cable, blue, 1000ft"])
    unit_of_measure: str = Field("", max_length=50, examples=["Box"])
    quantity_available: float = Field(0, ge=0, examples=[12])
    quantity_allocated: float = Field(0, ge=0, examples=[3])
    reorder_threshold: float = Field(0, ge=0, examples=[4])
    reorder_quantity: float = Field(0, ge=0, examples=[10])
    location: str = Field("", max_length=100, examples=["Warehouse"])
    cost: float = Field(0, ge=0, examples=[289.5])
    custom_fields: Dict[str, Any] = Field(default_factory=dict)


class InventoryItemCreate(InventoryItemBase):
    """Schema for adding an inventory item"""
    pass


class InventoryItemUpdate(CamelModel):
    """Schema for editing an inventory item; only given fields change"""
    category: Optional[str] = Field(None, max_length=100)
    sub_category: Optional[str] = Field(None, max_length=100)
    manufacturer: Optional[str] = Field(None, max_length=100)
    part_number: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    unit_of_measure: Optional[str] = Field(None, max_length=50)
    quantity_available: Optional[float] = Field(None, ge=0)
    quantity_allocated: Optional[float] = Field(None, ge=0)
    reorder_threshold: Optional[float] = Field(None, ge=0)
    reorder_quantity: Optional[float] = Field(None, ge=0)
    location: Optional[str] = Field(None, max_length=100)
    cost: Optional[float] = Field(None, ge=0)
    custom_fields: Optional[Dict[str, Any]] = None


class InventoryRecord(InventoryItemBase):
    """A low voltage inventory item held by the record store"""
    id: Optional[str] = None
    project_id: Optional[str] = None
    last_updated: datetime = Field(default_factory=utcnow)
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("id", "project_id", mode="before")
    @classmethod
    def coerce_identifier(cls, v):
        # Procore hands out numeric ids
        return str(v) if v is not None else v

    @computed_field
    @property
    def total_quantity(self) -> float:
        return self.quantity_available + self.quantity_allocated

    @computed_field
    @property
    def needs_reorder(self) -> bool:
        return self.quantity_available <= self.reorder_threshold

    def to_json(self) -> Dict[str, Any]:
        """Serialize for upstream and local storage"""
        return self.model_dump(mode="json", by_alias=True, exclude={"total_quantity", "needs_reorder"})


class AdjustmentType(str, Enum):
    add = "add"
    remove = "remove"
    allocate = "allocate"
    deallocate = "deallocate"


class QuantityAdjustment(BaseModel):
    """Schema for adjusting an item's quantity"""
    type: AdjustmentType = Field(..., examples=["allocate"])
    quantity: float = Field(..., gt=0, examples=[5])
    notes: Optional[str] = Field(None, max_length=500)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "type": "add",
                "quantity": 10,
                "notes": "Delivered to site trailer"
            }
        }
    )


class CategorySummary(BaseModel):
    count: int = 0
    value: float = 0


class InventoryReport(CamelModel):
    """Summary statistics over a (filtered) inventory"""
    total_items: int
    total_value: float
    low_stock_items: int
    by_category: Dict[str, CategorySummary]
    items: List[Dict[str, Any]]


class InventoryOptions(CamelModel):
    categories: List[str]
    sub_categories: Dict[str, List[str]]
    units: List[str]


class SyncResult(CamelModel):
    project_id: str
    updated_items: int


class PurchaseOrder(BaseModel):
    """Purchase order as returned by Procore (read-only)"""
    id: str
    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        return str(v)


class PurchaseOrderLineItem(BaseModel):
    """Purchase order line item as returned by Procore (read-only)"""
    description: str = ""
    part_number: Optional[str] = None
    manufacturer: Optional[str] = None
    quantity: float = 0
    received_quantity: Optional[float] = None
    unit_cost: Optional[float] = None
    unit: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def drop_nulls(cls, data):
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value is not None}
        return data


class RfiResponse(BaseModel):
    body: str = ""


class Rfi(BaseModel):
    id: str
    subject: Optional[str] = None
    body: Optional[str] = None
    responses: List[RfiResponse] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        return str(v)


class ProductMention(CamelModel):
    """Product information found in an RFI response"""
    rfi_id: str
    excerpt: str
    part_numbers: List[str] = Field(default_factory=list)


class ProcoreSession(BaseModel):
    """OAuth tokens for the Procore API, passed to every API call"""
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None

    _changed: bool = PrivateAttr(default=False)

    model_config = ConfigDict(from_attributes=True)

    @field_validator("expires_at")
    @classmethod
    def assume_utc(cls, v):
        # sqlite drops tzinfo on the way back
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @property
    def changed(self) -> bool:
        return self._changed

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        if not self.access_token or self.expires_at is None:
            return False
        return (now or utcnow()) < self.expires_at

    def set_tokens(self, data: Dict[str, Any], default_expires_in: int) -> None:
        """Store tokens from an OAuth token response"""
        self.access_token = data.get("access_token")
        self.refresh_token = data.get("refresh_token")
        expires_in = data.get("expires_in") or default_expires_in
        self.expires_at = utcnow() + timedelta(seconds=expires_in)
        self._changed = True

    def clear(self) -> None:
        self.access_token = None
        self.refresh_token = None
        self.expires_at = None
        self._changed = True
