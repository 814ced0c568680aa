"""
x402 gateway exception hierarchy
"""


class X402Error(Exception):
    """x402 gateway base exception"""

    pass


class ValidationError(X402Error):
    """Pre-payment request validation failed"""

    def __init__(self, message: str, status: int = 400, details: dict | None = None):
        self.status = status
        self.details = details
        super().__init__(message)


class SignatureError(X402Error):
    """Signature-related error"""

    pass


class SignatureVerificationError(SignatureError):
    """Signature could not be recovered or verified"""

    pass


class TransactionError(X402Error):
    """Transaction-related error"""

    pass


class ConfigurationError(X402Error):
    """Configuration-related error"""

    pass


class UnsupportedNetworkError(ConfigurationError):
    """Unsupported network"""

    pass


class UnknownTokenError(ConfigurationError):
    """Unknown token"""

    pass


class ResponseValidationError(ConfigurationError):
    """A built payment-required response failed structural validation"""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__(f"Invalid x402 response: {', '.join(errors)}")
