from __future__ import annotations

from datetime import datetime
from enum import Enum

from database import from_iso
from errors import ValidationError
from utils.validators import ContactValidator, TextValidator

DEFAULT_COUNTRY = "Turkey"
MIN_RESERVATIONS = 1
MAX_RESERVATIONS = 10


class CustomerStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    INACTIVE = "inactive"


class Customer:
    """A library member who can hold reservations."""

    def __init__(self, first_name: str, last_name: str, email: str, phone: str | None = None,
                 address: dict | None = None, membership_date: datetime | str | None = None,
                 status: CustomerStatus | str = CustomerStatus.ACTIVE, max_reservations: int = 3,
                 notes: str | None = None, id: int | None = None,
                 created_at: datetime | str | None = None) -> None:
        self.id = id
        self.first_name = (first_name or "").strip()
        self.last_name = (last_name or "").strip()
        self.email = ContactValidator.normalize_email(email)
        self.phone = phone.strip() if phone else None
        address = dict(address or {})
        self.address = {
            "street": address.get("street"),
            "city": address.get("city"),
            "zip_code": address.get("zip_code"),
            "country": address.get("country") or DEFAULT_COUNTRY,
        }
        self.membership_date = from_iso(membership_date)
        self.status = status
        self.max_reservations = max_reservations
        self.notes = notes
        self.created_at = from_iso(created_at)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def validate(self) -> None:
        if not TextValidator.is_non_empty(self.first_name, max_length=50):
            raise ValidationError("First name is required and cannot exceed 50 characters.")
        if not TextValidator.is_non_empty(self.last_name, max_length=50):
            raise ValidationError("Last name is required and cannot exceed 50 characters.")
        if not ContactValidator.is_valid_email(self.email):
            raise ValidationError("Please enter a valid email address.")
        if self.phone and not ContactValidator.is_valid_phone(self.phone):
            raise ValidationError("Please enter a valid phone number.")
        try:
            self.status = CustomerStatus(self.status)
        except ValueError:
            raise ValidationError(f"Unknown customer status '{self.status}'.") from None
        if (isinstance(self.max_reservations, bool) or not isinstance(self.max_reservations, int)
                or not MIN_RESERVATIONS <= self.max_reservations <= MAX_RESERVATIONS):
            raise ValidationError(
                f"Maximum reservations must be between {MIN_RESERVATIONS} and {MAX_RESERVATIONS}.")
        if not TextValidator.within_length(self.notes, 500):
            raise ValidationError("Notes cannot exceed 500 characters.")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "membership_date": self.membership_date,
            "status": CustomerStatus(self.status).value,
            "max_reservations": self.max_reservations,
            "notes": self.notes,
            "created_at": self.created_at,
        }

    @staticmethod
    def from_dict(data: dict) -> "Customer":
        return Customer(
            id=data.get("id"),
            first_name=data.get("first_name", ""),
            last_name=data.get("last_name", ""),
            email=data.get("email", ""),
            phone=data.get("phone"),
            address=data.get("address"),
            membership_date=data.get("membership_date"),
            status=data.get("status") or CustomerStatus.ACTIVE,
            max_reservations=data.get("max_reservations", 3),
            notes=data.get("notes"),
            created_at=data.get("created_at"),
        )
