"""
Payment error taxonomy.

Each error carries the HTTP status it maps to; the handler registered in
app.main renders them as {"error": <message>}.
"""


class PaymentError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class SignatureError(PaymentError):
    """Webhook signature missing or not matching the shared secret."""
    status_code = 400


class MalformedPayloadError(PaymentError):
    """Webhook body is not the JSON object we expect."""
    status_code = 400


class ValidationError(PaymentError):
    status_code = 400


class TransactionNotFoundError(PaymentError):
    """
    No transaction matches the gateway reference.
    Surfaced as 404 so the gateway retries once the record is written.
    """
    status_code = 404


class PromotedPollNotFoundError(PaymentError):
    status_code = 404


class InvalidTransitionError(PaymentError):
    status_code = 409


class SettlementError(PaymentError):
    """The authoritative transaction write failed."""
    status_code = 500


class GatewayError(PaymentError):
    """Paystack rejected or garbled an API call."""
    status_code = 502
