"""
Database Schemas for the Homes Rental API

MongoDB collections are defined below using Pydantic models. Each class name is
converted to lowercase for the collection name (User -> "user").

We will use these collections:
- user: accounts (role user or admin)
- home: listings, with their reviews embedded
- booking: reservations against a home
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, EmailStr, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    user = "user"
    admin = "admin"


class BookingStatus(str, Enum):
    pending = "pending"
    confirmed = "confirmed"
    canceled = "canceled"


class PaymentStatus(str, Enum):
    unpaid = "unpaid"
    paid = "paid"


class User(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    username: str = Field(..., min_length=3, max_length=40)
    email: EmailStr
    password_hash: str = Field(..., description="BCrypt hash of password")
    role: Role = Field(Role.user)
    address: Optional[str] = Field(None, max_length=400)
    phone_number: Optional[str] = None
    id_number: Optional[str] = None
    company_name: str = "Independent"
    company_description: str = "No company description provided"
    languages_spoken: List[str] = Field(default_factory=lambda: ["English"])
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Review(BaseModel):
    """Embedded in Home.reviews. Exactly one of user_id / booking_id is set."""

    id: str = Field(default_factory=lambda: str(ObjectId()))
    user_id: Optional[str] = None
    booking_id: Optional[str] = None
    comment: str = Field(..., min_length=1)
    rating: int = Field(..., ge=1, le=5)
    date: datetime = Field(default_factory=utcnow)


class Home(BaseModel):
    owner_id: str = Field(..., description="Reference to user _id (owner)")
    name: str = Field(..., min_length=1, max_length=120)
    description: str = Field(..., min_length=1)
    location: str = Field(..., min_length=1)
    price: float = Field(..., gt=0, description="Nightly price")
    image_urls: List[str] = Field(..., min_length=1)
    bedrooms: int = Field(1, ge=0)
    beds: int = Field(1, ge=0)
    max_guests: int = Field(..., ge=1)
    is_guest_number_fixed: bool = False
    amenities: List[str] = Field(default_factory=list)
    reviews: List[Review] = Field(default_factory=list)
    rating: float = 0
    version: int = 0


class Booking(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    home_id: str
    client_name: str
    client_email: EmailStr
    client_phone: str
    check_in: datetime
    check_out: datetime
    guests: int = Field(1, ge=1)
    total_price: float = Field(..., ge=0)
    status: BookingStatus = BookingStatus.confirmed
    payment_status: PaymentStatus = PaymentStatus.unpaid
    review_token: Optional[str] = None
    review_link: Optional[str] = None
    review_link_sent_at: Optional[datetime] = None
    review_used_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
