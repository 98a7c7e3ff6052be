"""
Payment incident log
Records charges the backend failed to reconcile so support can find them
"""
import logging
import uuid
from datetime import datetime
from sqlalchemy.orm import Session, sessionmaker
from marketplace.database import SessionLocal
from marketplace.models import PaymentIncident

logger = logging.getLogger(__name__)


def new_reference_id() -> str:
    """Short reference the user quotes to support"""
    return "PAY-" + uuid.uuid4().hex[:10].upper()


class IncidentLog:
    """Store and query reconciliation incidents"""

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self.session_factory = session_factory

    def record(self, booking_id, payment_intent_id, payment_method_id: str | None, error_message: str) -> str:
        """
        Record a charge the backend did not acknowledge.

        Returns:
            The reference id shown to the user
        """
        reference_id = new_reference_id()
        db: Session = self.session_factory()
        try:
            incident = PaymentIncident(
                reference_id=reference_id,
                booking_id=str(booking_id),
                payment_intent_id=str(payment_intent_id),
                payment_method_id=payment_method_id,
                error_message=error_message,
            )
            db.add(incident)
            db.commit()
        finally:
            db.close()

        logger.error(
            "Unreconciled payment %s for booking %s (reference %s): %s",
            payment_intent_id, booking_id, reference_id, error_message,
        )
        return reference_id

    def get(self, reference_id: str) -> PaymentIncident | None:
        db: Session = self.session_factory()
        try:
            return db.query(PaymentIncident).filter(PaymentIncident.reference_id == reference_id).first()
        finally:
            db.close()

    def list_unresolved(self) -> list[PaymentIncident]:
        """Oldest first"""
        db: Session = self.session_factory()
        try:
            return (
                db.query(PaymentIncident)
                .filter(PaymentIncident.resolved == False)  # noqa: E712
                .order_by(PaymentIncident.created_at, PaymentIncident.id)
                .all()
            )
        finally:
            db.close()

    def mark_resolved(self, reference_id: str) -> bool:
        db: Session = self.session_factory()
        try:
            incident = db.query(PaymentIncident).filter(PaymentIncident.reference_id == reference_id).first()
            if not incident:
                return False
            incident.resolved = True
            incident.resolved_at = datetime.now()
            db.commit()
            logger.info("Payment incident %s resolved", reference_id)
            return True
        finally:
            db.close()


# Global instance
_incident_log = None


def get_incident_log() -> IncidentLog:
    """Get or create incident log instance"""
    global _incident_log
    if _incident_log is None:
        _incident_log = IncidentLog()
    return _incident_log
