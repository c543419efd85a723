from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime
from decimal import Decimal

class StationBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    location: Optional[str] = None
    address: Optional[str] = None
    connector_type: Optional[str] = None
    power_rating_kw: Optional[Decimal] = Field(None, ge=0)
    price_per_kwh: Optional[Decimal] = Field(None, ge=0)
    status: str = "active"
    is_available: bool = True
    operator_id: Optional[str] = None

class StationCreate(StationBase):
    pass

class StationAvailabilityUpdate(BaseModel):
    is_available: bool

class Station(StationBase):
    id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class StationAvailability(BaseModel):
    """What the booking validator needs to know about a station"""
    exists: bool
    is_available: bool = False

class StationSearchResult(BaseModel):
    stations: List[Station]
    total: int
    skip: int
    limit: int
