from sqlalchemy import Column, Integer, String, DateTime, Text, Boolean, func
from marketplace.database import Base


class PaymentIncident(Base):
    """Charges confirmed by the payment provider but not recorded by the backend"""
    __tablename__ = "payment_incidents"

    id = Column(Integer, primary_key=True, index=True)
    reference_id = Column(String(32), unique=True, index=True)  # Shown to the user
    booking_id = Column(String(64), index=True)
    payment_intent_id = Column(String(255))
    payment_method_id = Column(String(255), nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=func.now())
    resolved = Column(Boolean, default=False)
    resolved_at = Column(DateTime, nullable=True)
