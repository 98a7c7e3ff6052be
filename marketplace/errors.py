"""
Error taxonomy shared by the API clients, the payment adapter and the views.

Every error carries a user-facing message and the next action the page
should offer, so no failure leaves a view without a way forward.
"""


class MarketplaceError(Exception):
    """Base class for all errors surfaced to a page"""

    kind = "error"
    status_code = 500
    next_action = "retry"

    def __init__(self, message: str = "Something went wrong. Please try again.", status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        return {
            "error": self.kind,
            "message": self.message,
            "next_action": self.next_action,
        }


class AuthRequiredError(MarketplaceError):
    """No valid session; the page redirects to login"""

    kind = "auth_required"
    status_code = 401
    next_action = "login"
    redirect_to = "/login"

    def __init__(self, message: str = "Please log in to continue."):
        super().__init__(message)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["redirect_to"] = self.redirect_to
        return data


class NotFoundError(MarketplaceError):
    """Resource missing or not accessible to the caller"""

    kind = "not_found"
    status_code = 404
    next_action = "go_back"

    def __init__(self, message: str = "We couldn't find what you were looking for."):
        super().__init__(message)


class ValidationError(MarketplaceError):
    """Malformed user input, shown inline next to the control"""

    kind = "validation"
    status_code = 422
    next_action = "fix_input"


class ApiError(MarketplaceError):
    """A 4xx from the marketplace API; the message is the backend's own"""

    kind = "api_error"
    status_code = 400
    next_action = "go_back"


class IntentCreationError(MarketplaceError):
    """The booking cannot be charged (already paid, cancelled, missing)"""

    kind = "intent_creation"
    status_code = 409
    next_action = "go_back"


class PaymentDeclinedError(MarketplaceError):
    """Card-level failure reported by the payment provider; retryable in place"""

    kind = "payment_declined"
    status_code = 402
    next_action = "retry"

    def __init__(self, message: str = "Your payment could not be completed.", code: str | None = None):
        super().__init__(message)
        self.code = code


class ReconciliationError(MarketplaceError):
    """The card was charged but the backend did not record the payment.

    Never retryable by resubmitting: the user must contact support with
    the reference id.
    """

    kind = "reconciliation"
    status_code = 409
    next_action = "contact_support"

    def __init__(self, message: str | None = None, reference_id: str | None = None):
        if message is None:
            message = (
                "Your payment went through but we couldn't record it. "
                "Please do not pay again; contact support"
                + (f" with reference {reference_id}." if reference_id else ".")
            )
        super().__init__(message)
        self.reference_id = reference_id

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["reference_id"] = self.reference_id
        return data


class TransientNetworkError(MarketplaceError):
    """Connectivity or server-side failure; retry via explicit user action"""

    kind = "transient"
    status_code = 503
    next_action = "retry"

    def __init__(self, message: str = "We're having trouble connecting. Please try again.", upstream_status: int | None = None):
        super().__init__(message)
        self.upstream_status = upstream_status
