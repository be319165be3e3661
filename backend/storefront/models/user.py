"""User data models."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, EmailStr, Field

from storefront.utils.helpers import utcnow


class UserBase(BaseModel):
    """Base user model."""

    userId: str = Field(..., description="Unique user identifier")
    firstName: str = Field(..., min_length=1, max_length=100)
    lastName: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    phone: str = Field(..., pattern=r"^\+?\d{9,15}$")


class UserCreate(UserBase):
    """User creation model."""

    pass


class UserInDB(UserBase):
    """User model as stored in database."""

    createdAt: datetime = Field(default_factory=utcnow)
    updatedAt: datetime = Field(default_factory=utcnow)

    model_config = {
        "json_schema_extra": {
            "example": {
                "userId": "user_001",
                "firstName": "Asha",
                "lastName": "Rao",
                "email": "asha.rao@example.com",
                "phone": "+919876543210",
                "createdAt": "2024-01-01T00:00:00",
                "updatedAt": "2024-01-01T00:00:00",
            }
        }
    }


class CustomerSnapshot(BaseModel):
    """Customer contact details handed to invoice and notification collaborators."""

    name: str
    email: str = ""
    phone: str = ""

    @classmethod
    def build(
        cls, shipping_address: dict[str, Any], user: Optional[UserInDB]
    ) -> "CustomerSnapshot":
        """Prefer the shipping address, fall back to the user record."""
        first = shipping_address.get("firstName")
        last = shipping_address.get("lastName")
        if first and last:
            name = f"{first} {last}".strip()
        elif user:
            name = f"{user.firstName} {user.lastName}".strip()
        else:
            name = ""

        return cls(
            name=name or "Valued Customer",
            email=shipping_address.get("email") or (user.email if user else ""),
            phone=(
                shipping_address.get("phone")
                or shipping_address.get("mobile")
                or (user.phone if user else "")
            ),
        )
