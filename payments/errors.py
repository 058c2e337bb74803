"""
PayPal gateway error taxonomy.

InvalidState / InvalidRequest are local logic errors and are always raised
before any network call. GatewayDeclined carries PayPal's own message and
code. GatewayUnreachable covers transport failures; nothing in this package
retries them.
"""


class PaymentGatewayError(Exception):
    pass


class InvalidState(PaymentGatewayError):
    """The payment's current state does not allow the operation."""


class InvalidRequest(PaymentGatewayError):
    """Caller-level misuse, e.g. refunding more than the balance."""


class GatewayDeclined(PaymentGatewayError):
    """PayPal answered and reported a failure."""

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        self.code = code

    def __str__(self) -> str:
        if self.code:
            return f"{self.message} (code {self.code})"
        return self.message


class GatewayUnreachable(PaymentGatewayError):
    """Timeout or connection failure talking to PayPal."""


class ValidationFailed(PaymentGatewayError):
    """An IPN could not be authenticated with PayPal."""
