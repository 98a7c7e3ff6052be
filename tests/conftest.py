"""
Pytest configuration and fixtures
"""
import asyncio
import copy
import pytest
import httpx
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from marketplace.database import Base
from marketplace.errors import MarketplaceError
from marketplace.models import Booking, ConfirmationResult, ConfirmedIntent, Document, PaymentIntent, ProviderError
from marketplace.services.incidents import IncidentLog
from marketplace.services.payments import PaymentProvider


# Use in-memory database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"

BOOKING_DATA = {
    "id": "B1",
    "property": {
        "id": 7,
        "title": "Seaside Loft",
        "city": "Lisbon",
        "state": "LX",
        "price_per_night": "120.00",
    },
    "check_in_date": "2026-11-01",
    "check_out_date": "2026-11-04",
    "guests": 2,
    "subtotal": "360.00",
    "cleaning_fee": "50.00",
    "service_fee": "40.00",
    "total_price": "450.00",
    "status": "pending",
    "is_paid": False,
    "created_at": "2026-10-01T10:00:00Z",
}

INTENT_DATA = {
    "id": "PI_1",
    "client_secret": "PI_1_secret_abc",
    "status": "requires_payment_method",
    "booking_id": "B1",
}

DOCUMENT_DATA = {
    "id": 31,
    "document_type": "ownership_deed",
    "status": "pending",
    "rejection_reason": None,
    "feedback_read": False,
    "created_at": "2026-10-01T09:00:00Z",
    "property": {"id": 7},
    "feedback_thread": [
        {
            "id": 2,
            "message": "Thanks, uploading a clearer scan.",
            "sender_type": "landlord",
            "created_at": "2026-10-02T09:00:00Z",
            "is_read": False,
        },
        {
            "id": 1,
            "message": "The scan is blurry, please re-upload.",
            "sender_type": "admin",
            "created_at": "2026-10-01T12:00:00Z",
            "is_read": False,
        },
    ],
}


def make_http(handler) -> httpx.AsyncClient:
    """AsyncClient whose requests are answered by handler(request)"""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://api.test/api")


@pytest.fixture(scope="session")
def test_engine():
    """Create test database engine"""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def test_session_factory(test_engine):
    """Session factory over a clean schema"""
    Base.metadata.create_all(bind=test_engine)

    yield sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

    # Cleanup
    Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def incident_log(test_session_factory):
    return IncidentLog(test_session_factory)


class FakeBookingService:
    """Stands in for BookingService; records every call"""

    def __init__(self):
        self.booking_data = copy.deepcopy(BOOKING_DATA)
        self.intents = [dict(INTENT_DATA)]
        self.booking_error: MarketplaceError | None = None
        self.intent_error: MarketplaceError | None = None
        self.process_error: MarketplaceError | None = None
        self.booking_calls = []
        self.intent_calls = []
        self.process_calls = []

    async def get_booking_by_id(self, booking_id):
        self.booking_calls.append(booking_id)
        if self.booking_error:
            raise self.booking_error
        return Booking.model_validate(self.booking_data)

    async def create_payment_intent(self, booking_id, setup_future_usage=None):
        self.intent_calls.append((booking_id, setup_future_usage))
        if self.intent_error:
            raise self.intent_error
        data = self.intents[min(len(self.intent_calls), len(self.intents)) - 1]
        return PaymentIntent.model_validate(data)

    async def process_payment(self, payment_intent_id, payment_method_id, save_card=False):
        self.process_calls.append((payment_intent_id, payment_method_id, save_card))
        if self.process_error:
            raise self.process_error
        return {"status": "completed"}


class ScriptedProvider(PaymentProvider):
    """Provider returning queued results (or raising queued errors); optionally waits on a gate"""

    name = "scripted"

    def __init__(self, *results):
        self.results = list(results)
        self.calls = []
        self.gate: asyncio.Event | None = None
        # Statuses (or errors) reported by retrieve_intent, in order
        self.intent_states = []
        self.retrieve_calls = []

    async def confirm_card_payment(self, client_secret, payment_method_id, save_card=False):
        self.calls.append((client_secret, payment_method_id, save_card))
        if self.gate is not None:
            await self.gate.wait()
        if self.results:
            result = self.results.pop(0)
            if isinstance(result, Exception):
                raise result
            return result
        return succeeded(client_secret.split("_secret_")[0], payment_method_id)

    async def retrieve_intent(self, intent_id):
        self.retrieve_calls.append(intent_id)
        status = self.intent_states.pop(0) if self.intent_states else "requires_payment_method"
        if isinstance(status, Exception):
            raise status
        return ConfirmedIntent(id=intent_id, status=status, payment_method="pm_1")


def succeeded(intent_id="PI_1", payment_method="pm_1") -> ConfirmationResult:
    return ConfirmationResult(payment_intent=ConfirmedIntent(id=intent_id, status="succeeded", payment_method=payment_method))


def declined(message="Your card was declined.", code="card_declined") -> ConfirmationResult:
    return ConfirmationResult(error=ProviderError(message=message, code=code, type="card_error"))


class FakeScheduler:
    """Collects one-shot jobs so tests decide when they fire"""

    def __init__(self):
        self.jobs = {}
        self.cancelled = []
        self._next = 0

    def schedule_once(self, delay_seconds, func, *args):
        self._next += 1
        job_id = f"job-{self._next}"
        self.jobs[job_id] = (delay_seconds, func, args)
        return job_id

    def cancel(self, job_id):
        self.cancelled.append(job_id)
        self.jobs.pop(job_id, None)

    async def run_all(self):
        jobs, self.jobs = self.jobs, {}
        for _, func, args in jobs.values():
            await func(*args)


class FakeDocumentService:
    """Stands in for DocumentService over an in-memory document"""

    def __init__(self, document_data=None):
        self.document_data = copy.deepcopy(document_data or DOCUMENT_DATA)
        self.property_calls = []
        self.detail_calls = []
        self.sent = []
        self.read_calls = []
        self.send_error: MarketplaceError | None = None
        self.read_error: MarketplaceError | None = None
        self.detail_error: MarketplaceError | None = None
        self.send_response = None
        self.gate: asyncio.Event | None = None
        self._next_id = 100

    async def get_document_property(self, document_id):
        self.property_calls.append(document_id)
        return self.document_data["property"]["id"]

    async def get_document_details(self, property_id, document_id):
        self.detail_calls.append((property_id, document_id))
        if self.detail_error:
            raise self.detail_error
        return Document.model_validate(copy.deepcopy(self.document_data))

    async def add_feedback_message(self, property_id, document_id, message, sender_type=None):
        self.sent.append((property_id, document_id, message))
        if self.gate is not None:
            await self.gate.wait()
        if self.send_error:
            raise self.send_error
        if self.send_response is not None:
            return self.send_response
        self._next_id += 1
        saved = {
            "id": self._next_id,
            "message": message,
            "sender_type": sender_type.value if sender_type else "landlord",
            "created_at": "2026-10-03T08:00:00Z",
            "is_read": False,
        }
        self.document_data["feedback_thread"].append(saved)
        return saved

    async def mark_feedback_read(self, property_id, document_id):
        self.read_calls.append((property_id, document_id))
        if self.read_error:
            raise self.read_error
        return {"detail": "ok"}


@pytest.fixture
def booking_service():
    return FakeBookingService()


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def document_service():
    return FakeDocumentService()


# Test markers
def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow tests")
