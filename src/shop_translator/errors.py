import sqlite3
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    INSUFFICIENT_CREDITS = "INSUFFICIENT_CREDITS"
    LEDGER_UNAVAILABLE = "LEDGER_UNAVAILABLE"
    RESERVATION_STATE = "RESERVATION_STATE"
    PROVIDER_FAILURE = "PROVIDER_FAILURE"
    PROVIDER_TIMEOUT = "PROVIDER_TIMEOUT"
    PLACEHOLDER_CORRUPTION = "PLACEHOLDER_CORRUPTION"
    QUALITY_INCIDENT = "QUALITY_INCIDENT"
    CONFIGURATION_FAULT = "CONFIGURATION_FAULT"
    BRAND_SKIP = "BRAND_SKIP"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class TranslatorError(RuntimeError):
    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str = "", **context: Any) -> None:
        super().__init__(message or self.code.value)
        self.context = context


class InsufficientCredits(TranslatorError):
    code = ErrorCode.INSUFFICIENT_CREDITS

    def __init__(self, shop_id: str, required: int, available: int) -> None:
        super().__init__(
            f"shop {shop_id} needs {required} credits, {available} available",
            shop_id=shop_id,
            required=required,
            available=available,
        )
        self.shop_id = shop_id
        self.required = required
        self.available = available


class LedgerUnavailable(TranslatorError):
    code = ErrorCode.LEDGER_UNAVAILABLE


class ReservationNotFound(TranslatorError):
    code = ErrorCode.RESERVATION_STATE


class ReservationStateError(TranslatorError):
    code = ErrorCode.RESERVATION_STATE


class ProviderFailure(TranslatorError):
    code = ErrorCode.PROVIDER_FAILURE

    def __init__(self, message: str = "", transient: bool = True, **context: Any) -> None:
        super().__init__(message, **context)
        self.transient = transient


class ProviderTimeout(ProviderFailure):
    code = ErrorCode.PROVIDER_TIMEOUT


class ProviderConfigurationError(TranslatorError):
    code = ErrorCode.CONFIGURATION_FAULT


class ConfigurationFault(TranslatorError):
    code = ErrorCode.CONFIGURATION_FAULT


LEDGER_ERRORS = (InsufficientCredits, LedgerUnavailable, ReservationNotFound, ReservationStateError)


def failure_code(exc: BaseException) -> ErrorCode:
    if isinstance(exc, TranslatorError):
        return exc.code
    if isinstance(exc, sqlite3.OperationalError):
        return ErrorCode.LEDGER_UNAVAILABLE
    return ErrorCode.INTERNAL_ERROR
