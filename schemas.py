"""
Database Schemas for the RentCar Platform

Each Pydantic model below represents a MongoDB collection. The collection
name is the lowercase of the class name (e.g., Car -> "car").

Attributes are snake_case in Python and camelCase on the wire and in storage;
dump with `by_alias=True` before writing.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

BookingStatus = Literal["pending", "confirmed", "cancelled", "completed"]
UserRole = Literal["user", "admin"]
UserStatus = Literal["active", "suspended"]
OtpType = Literal["registration", "password_reset"]
NotificationType = Literal["welcome", "promotion", "info", "warning"]


class Document(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class User(Document):
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address, stored lowercased")
    password: str = Field(..., description="Salted password hash")
    phone: Optional[str] = Field(None, description="Phone number")
    role: UserRole = Field("user", description="user or admin")
    status: UserStatus = Field("active", description="active or suspended")
    join_date: Optional[datetime] = None


class Car(Document):
    name: str = Field(..., description="Display name, e.g., Tesla Model 3")
    model: str = Field(..., description="Model name")
    image: str = Field("", description="Image URL")
    description: str = ""
    price_per_hour: float = Field(..., gt=0, description="Rental price per hour")
    quantity: int = Field(..., ge=1, description="Units owned")
    available: Optional[int] = Field(None, ge=0, description="Units free to book, defaults to quantity")
    category: str = Field(..., description="sedan, suv, coupe, hatchback, van")
    transmission: str = Field(..., description="manual or automatic")
    seats: int = Field(..., ge=1, le=9, description="Seating capacity")
    features: List[str] = Field(default_factory=list)


class CarUpdate(Document):
    name: Optional[str] = None
    model: Optional[str] = None
    image: Optional[str] = None
    description: Optional[str] = None
    price_per_hour: Optional[float] = Field(None, gt=0)
    quantity: Optional[int] = Field(None, ge=1)
    category: Optional[str] = None
    transmission: Optional[str] = None
    seats: Optional[int] = Field(None, ge=1, le=9)
    features: Optional[List[str]] = None


class Booking(Document):
    user_id: str = Field(..., description="User id")
    car_id: str = Field(..., description="Car id")
    start_date: str = Field(..., description="Pickup date, YYYY-MM-DD")
    end_date: str = Field(..., description="Return date, YYYY-MM-DD")
    start_time: str = Field(..., description="Pickup time, HH:MM")
    end_time: str = Field(..., description="Return time, HH:MM")
    total_amount: float = Field(..., ge=0)
    need_driver: bool = False
    driver_contact: Optional[str] = None
    status: BookingStatus = "pending"


class BookingStatusUpdate(Document):
    status: BookingStatus


class PendingUser(Document):
    name: str
    password: str
    phone: Optional[str] = None
    role: UserRole = "user"


class Otp(Document):
    email: str
    otp: str = Field(..., min_length=6, max_length=6)
    type: OtpType = "registration"
    expires_at: datetime
    user_data: Optional[PendingUser] = None


class Notification(Document):
    user_id: str
    title: str
    message: str
    type: NotificationType = "info"
    is_read: bool = False


class UserUpdate(Document):
    name: Optional[str] = None
    phone: Optional[str] = None
    role: Optional[UserRole] = None
    status: Optional[UserStatus] = None
