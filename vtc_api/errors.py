class VTCError(Exception):
    """Base class for errors raised by the booking API."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidRequest(VTCError):
    status_code = 400


class NotFound(VTCError):
    status_code = 404


class PaymentProviderError(VTCError):
    """The payment provider rejected or failed a call."""

    status_code = 500


class SignatureInvalid(VTCError):
    status_code = 400


class WebhooksDisabled(VTCError):
    """No webhook secret configured: events cannot be trusted."""

    status_code = 200


class StorageUnavailable(VTCError):
    status_code = 503
