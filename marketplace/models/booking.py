from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Union
from pydantic import BaseModel

Identifier = Union[int, str]


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PropertySummary(BaseModel):
    """Property fields shown on the checkout page"""

    id: Identifier
    title: str
    city: Optional[str] = None
    state: Optional[str] = None
    price_per_night: Decimal = Decimal("0")


class Booking(BaseModel):
    """A reserved stay, as returned by the marketplace API"""

    id: Identifier
    property: PropertySummary
    check_in_date: date
    check_out_date: date
    guests: int = 1
    subtotal: Decimal = Decimal("0")
    cleaning_fee: Decimal = Decimal("0")
    service_fee: Decimal = Decimal("0")
    total_price: Decimal
    status: BookingStatus = BookingStatus.PENDING
    is_paid: bool = False
    created_at: Optional[datetime] = None

    # Guest checkout (no account)
    guest_email: Optional[str] = None
    guest_name: Optional[str] = None
    guest_phone: Optional[str] = None

    @property
    def nights(self) -> int:
        return (self.check_out_date - self.check_in_date).days

    @property
    def is_chargeable(self) -> bool:
        return not self.is_paid and self.status not in (BookingStatus.CANCELLED, BookingStatus.COMPLETED)
