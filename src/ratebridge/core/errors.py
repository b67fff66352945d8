from __future__ import annotations

from decimal import Decimal


class RateBridgeError(Exception):
    pass


class ConfigurationError(RateBridgeError):
    """Operator-side misconfiguration (e.g. missing API key). Never retried."""


class InvalidInputError(RateBridgeError):
    pass


class InvalidAmountError(InvalidInputError):
    def __init__(self, message: str, *, amount: object = None):
        super().__init__(message)
        self.amount = amount


class CurrencyNotFoundError(InvalidInputError):
    def __init__(self, code: str, *, field: str | None = None):
        label = code or "<empty>"
        if field:
            message = f"Currency '{label}' ({field}) is not supported."
        else:
            message = f"Currency '{label}' is not supported."
        super().__init__(message)
        self.code = code
        self.field = field


class UnsupportedBaseCurrencyError(InvalidInputError):
    def __init__(self, code: str):
        super().__init__(f"Base currency '{code}' is not supported.")
        self.code = code


class ProviderError(RateBridgeError):
    """Failure talking to the external rate provider."""

    retryable: bool = False

    def __init__(self, message: str, *, base_currency: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.base_currency = base_currency
        self.status_code = status_code


class TransientProviderError(ProviderError):
    retryable = True


class TransportError(TransientProviderError):
    pass


class ServerError(TransientProviderError):
    pass


class MalformedResponseError(TransientProviderError):
    pass


class RateLimitError(ProviderError):
    retryable = True


class AuthError(ProviderError):
    pass


class ProviderRequestError(ProviderError):
    """Non-2xx response that is neither auth, rate-limit nor server side."""


class DataNotFoundError(RateBridgeError):
    pass


class RateNotFoundError(DataNotFoundError):
    def __init__(self, from_currency: str, to_currency: str, *, intermediate: str | None = None):
        message = f"Exchange rate not found for {from_currency} to {to_currency}."
        if intermediate:
            message = (
                f"Exchange rate not found for {from_currency} to {to_currency} "
                f"(no direct rate and no complete route via {intermediate})."
            )
        super().__init__(message)
        self.from_currency = from_currency
        self.to_currency = to_currency
        self.intermediate = intermediate


def describe_amount(amount: object) -> str:
    if isinstance(amount, Decimal):
        return format(amount, "f")
    return str(amount)
