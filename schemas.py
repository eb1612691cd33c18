"""
Database Schemas for the Rental Offers API

Each Pydantic model becomes a MongoDB collection using the lowercase of the class
name. For example, class Apartment -> "apartment" collection.
"""

from typing import Optional, List, Literal
from pydantic import BaseModel, Field, EmailStr, field_validator
from datetime import datetime

from currency import DEFAULT_RATES

Role = Literal["admin", "owner", "tenant"]
ApartmentStatus = Literal["available", "rented", "maintenance", "unavailable"]
OfferType = Literal["bidding", "fixed"]
OfferStatus = Literal["pending", "accepted", "rejected", "expired"]


class User(BaseModel):
    username: str = Field(..., min_length=3, max_length=50)
    email: EmailStr
    password_hash: str = Field(..., description="bcrypt hash")
    role: Role = Field("tenant", description="Fixed at registration")


class Apartment(BaseModel):
    title: str = Field(..., min_length=1)
    location: str = Field(..., min_length=1)
    description: Optional[str] = None
    rent: float = Field(..., gt=0)
    currency: str = "EUR"
    size: Optional[float] = Field(None, gt=0, description="Square metres")
    bedrooms: int = Field(1, ge=0)
    bathrooms: float = Field(1, ge=0)
    status: ApartmentStatus = "available"
    amenities: List[str] = []
    media: List[str] = Field([], description="File storage ids")

    @field_validator("currency")
    @classmethod
    def known_currency(cls, v: str) -> str:
        code = v.upper()
        if code not in DEFAULT_RATES:
            raise ValueError(f"Currency {v} not supported")
        return code

    @field_validator("amenities")
    @classmethod
    def unique_amenities(cls, v: List[str]) -> List[str]:
        seen = []
        for item in v:
            item = item.strip()
            if item and item not in seen:
                seen.append(item)
        return seen


class Offer(BaseModel):
    apartment_id: str
    tenant_id: str
    bid_amount: float = Field(..., ge=0)
    offer_type: OfferType
    move_in_date: datetime
    duration: int = Field(..., ge=1, le=60, description="Months")
    message: Optional[str] = None
    status: OfferStatus = "pending"
