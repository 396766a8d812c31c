from __future__ import annotations


class PaymentError(Exception):
    status_code = 500

    def __init__(self, message: str, booking_id: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.booking_id = booking_id


class GatewayRejected(PaymentError):
    """The gateway did not report the transaction as settled."""

    status_code = 400


class AmountMismatch(PaymentError):
    """Settled amount is materially below the recomputed booking price."""

    status_code = 402

    def __init__(self, booking_id: str, expected: float, actual: float) -> None:
        super().__init__("Payment amount does not match booking price", booking_id=booking_id)
        self.expected = expected
        self.actual = actual


class AccessDenied(PaymentError):
    status_code = 403

    def __init__(self, booking_id: str | None = None, caller_id: str | None = None) -> None:
        super().__init__("Access denied", booking_id=booking_id)
        self.caller_id = caller_id


class IntegrityFault(PaymentError):
    """Missing metadata, booking, package or payment row: a checkout-time bug."""

    status_code = 500


class BookingNotPayable(PaymentError):
    """Booking left the pending state (e.g. cancelled) before payment settled."""

    status_code = 409

    def __init__(self, booking_id: str, status: str) -> None:
        super().__init__(f"Booking {booking_id} is {status}, not awaiting payment", booking_id=booking_id)
        self.status = status
