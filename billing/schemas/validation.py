from datetime import date
from decimal import Decimal
from typing import List, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from billing.database.models import BillType
from billing.exceptions import ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


def parse_input(model_cls: Type[ModelT], data: Union[ModelT, dict]) -> ModelT:
    """Coerce a dict (or an already-built model) into ``model_cls``.

    pydantic errors are re-raised as the engine's ValidationError so callers
    deal with a single error taxonomy.
    """
    if isinstance(data, model_cls):
        return data
    try:
        return model_cls.model_validate(data)
    except PydanticValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        message = first.get("msg", "Invalid input")
        raise ValidationError(f"{location}: {message}" if location else message) from e


# ========== Meter readings ==========

class ReadingEntry(BaseModel):
    room_id: int = Field(gt=0)

    new_electric: int = Field(ge=0, description="Electric meter index must not be negative")
    new_water: int = Field(ge=0, description="Water meter index must not be negative")

    # Overrides & Flags
    old_electric_override: Optional[int] = Field(default=None, ge=0)
    old_water_override: Optional[int] = Field(default=None, ge=0)

    is_electric_reset: bool = False
    is_water_reset: bool = False


class RecordReadingsRequest(BaseModel):
    building_id: int = Field(gt=0)
    billing_month: int = Field(ge=1, le=12)
    billing_year: int = Field(ge=2000, le=2100)
    readings: List[ReadingEntry] = Field(min_length=1)

    @field_validator('readings')
    def unique_rooms(cls, v):
        room_ids = [item.room_id for item in v]
        if len(set(room_ids)) != len(room_ids):
            raise ValueError("Duplicate room_id found in the list.")
        return v


# ========== Bills ==========

class ServiceChargeIn(BaseModel):
    service_type: str = Field(min_length=1)
    quantity: Decimal = Field(default=Decimal(1), ge=0)
    unit_price: Optional[Decimal] = Field(default=None, ge=0)
    amount: Decimal = Field(ge=0)
    description: Optional[str] = None


class DraftBillIn(BaseModel):
    """Drafts accept partial data; nothing is checked against other bills."""
    contract_id: Optional[int] = None
    tenant_id: Optional[int] = None
    bill_type: BillType = BillType.other

    billing_period_start: Optional[date] = None
    billing_period_end: Optional[date] = None
    due_date: Optional[date] = None

    total_amount: Optional[Decimal] = Field(default=None, ge=0)
    description: Optional[str] = None
    reading_id: Optional[int] = None
    service_charges: Optional[List[ServiceChargeIn]] = None


class DraftBillUpdate(DraftBillIn):
    bill_type: Optional[BillType] = None


class IssuedBillIn(BaseModel):
    contract_id: int = Field(gt=0)
    tenant_id: int = Field(gt=0)
    bill_type: BillType

    billing_period_start: date
    billing_period_end: date
    due_date: date

    total_amount: Decimal = Field(gt=0)
    description: str = Field(min_length=1)
    service_charges: Optional[List[ServiceChargeIn]] = None

    @model_validator(mode='after')
    def period_order(self):
        if self.billing_period_end < self.billing_period_start:
            raise ValueError("billing_period_end must not be before billing_period_start")
        return self


class IssuedBillUpdate(BaseModel):
    """Fields an issued bill may still change. Anything else is rejected."""
    model_config = ConfigDict(extra='forbid')

    total_amount: Optional[Decimal] = Field(default=None, gt=0)
    description: Optional[str] = Field(default=None, min_length=1)
    due_date: Optional[date] = None
    penalty_amount: Optional[Decimal] = Field(default=None, ge=0)
    service_charges: Optional[List[ServiceChargeIn]] = None
