"""
Исключения приложения. У каждой доменной ошибки стабильный error_code,
который клиенты используют вместо текста сообщения.
"""

from typing import Optional, Dict, Any


class BaseAppException(Exception):
    """Базовое исключение приложения"""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)


# === Ошибки аутентификации ===
class AuthenticationError(BaseAppException):
    """Вызывающий не опознан"""

    def __init__(
        self,
        message: str = "Authentication failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, 401, "AUTHENTICATION_ERROR", details)


class ForbiddenError(BaseAppException):
    """Действие запрещено для роли или владельца"""

    def __init__(
        self, message: str = "Access denied", details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, 403, "FORBIDDEN", details)


# === Ошибки валидации ===
class ValidationError(BaseAppException):
    """Ошибка валидации данных"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, 400, "VALIDATION_ERROR", details)


class InvalidChildError(BaseAppException):
    def __init__(self, child_id: int):
        super().__init__(
            "Child profile does not belong to this member",
            400,
            "INVALID_CHILD",
            {"child_id": child_id},
        )


class InvalidDateError(BaseAppException):
    """Ручная отметка возможна только в день занятия"""

    def __init__(self, message: str = "Attendance can only be marked on the day of the class"):
        super().__init__(message, 400, "INVALID_DATE")


# === Ошибки ресурсов ===
class NotFoundError(BaseAppException):
    """Ресурс не найден"""

    def __init__(self, resource: str, identifier: Any = None, error_code: str = "NOT_FOUND"):
        if identifier is not None:
            message = f"{resource} with identifier '{identifier}' not found"
            details = {"resource": resource, "identifier": str(identifier)}
        else:
            message = f"{resource} not found"
            details = {"resource": resource}
        super().__init__(message, 404, error_code, details)


class ClassNotFoundError(NotFoundError):
    def __init__(self, class_instance_id: int):
        super().__init__("Class", class_instance_id, "CLASS_NOT_FOUND")


class BookingNotFoundError(NotFoundError):
    def __init__(self, booking_id: int):
        super().__init__("Booking", booking_id, "BOOKING_NOT_FOUND")


class NoPackageFoundError(NotFoundError):
    def __init__(self, user_id: int):
        super().__init__("Member package for user", user_id, "NO_PACKAGE_FOUND")


# === Кредиты ===
class InsufficientCreditsError(BaseAppException):
    def __init__(self, user_id: int):
        super().__init__(
            "No session credits available",
            400,
            "INSUFFICIENT_CREDITS",
            {"user_id": user_id},
        )


class CreditsExpiredError(BaseAppException):
    def __init__(self, user_id: int, expired_credits: int):
        super().__init__(
            f"Your remaining {expired_credits} credit(s) have expired",
            400,
            "CREDITS_EXPIRED",
            {"user_id": user_id, "expired_credits": expired_credits},
        )


# === Бронирования ===
class ClassFullError(BaseAppException):
    def __init__(self, class_instance_id: int, capacity: int):
        super().__init__(
            "Class is full",
            409,
            "CLASS_FULL",
            {"class_instance_id": class_instance_id, "capacity": capacity},
        )


class AlreadyBookedError(BaseAppException):
    def __init__(self, class_instance_id: int):
        super().__init__(
            "You already have a booking for this class",
            409,
            "ALREADY_BOOKED",
            {"class_instance_id": class_instance_id},
        )


class ClassCancelledError(BaseAppException):
    def __init__(self, class_instance_id: int):
        super().__init__(
            "Class has been cancelled",
            409,
            "CLASS_CANCELLED",
            {"class_instance_id": class_instance_id},
        )


class ClassInPastError(BaseAppException):
    def __init__(self, class_instance_id: int):
        super().__init__(
            "Class has already started",
            400,
            "CLASS_IN_PAST",
            {"class_instance_id": class_instance_id},
        )


class ClassEndedError(BaseAppException):
    def __init__(self, class_instance_id: int):
        super().__init__(
            "Class has already ended",
            400,
            "CLASS_ENDED",
            {"class_instance_id": class_instance_id},
        )


class AlreadyCancelledError(BaseAppException):
    def __init__(self, booking_id: int):
        super().__init__(
            "Booking is already cancelled",
            409,
            "ALREADY_CANCELLED",
            {"booking_id": booking_id},
        )


class CancellationWindowPassedError(BaseAppException):
    def __init__(self, booking_id: int, window_minutes: int):
        super().__init__(
            f"Bookings can only be cancelled at least {window_minutes} minutes before the class",
            400,
            "CANCELLATION_WINDOW_PASSED",
            {"booking_id": booking_id, "window_minutes": window_minutes},
        )


class InvalidStatusError(BaseAppException):
    def __init__(self, booking_id: int, status: str):
        super().__init__(
            f"Booking status '{status}' does not allow this action",
            409,
            "INVALID_STATUS",
            {"booking_id": booking_id, "status": status},
        )


# === Check-in ===
class InvalidSignatureError(BaseAppException):
    def __init__(self):
        super().__init__("Invalid QR code signature", 400, "INVALID_SIGNATURE")


class InvalidTokenError(BaseAppException):
    def __init__(self, message: str = "Malformed check-in token"):
        super().__init__(message, 400, "INVALID_TOKEN")


class TokenExpiredError(BaseAppException):
    def __init__(self, max_age_minutes: int):
        super().__init__(
            "QR code has expired, ask the member to refresh it",
            400,
            "TOKEN_EXPIRED",
            {"max_age_minutes": max_age_minutes},
        )


class BookingMismatchError(BaseAppException):
    def __init__(self, booking_id: int):
        super().__init__(
            "QR code does not match the booking",
            400,
            "BOOKING_MISMATCH",
            {"booking_id": booking_id},
        )


class AlreadyCheckedInError(BaseAppException):
    def __init__(self, booking_id: int):
        super().__init__(
            "Member has already checked in",
            409,
            "ALREADY_CHECKED_IN",
            {"booking_id": booking_id},
        )


class OutsideCheckinWindowError(BaseAppException):
    def __init__(self, window_minutes: int):
        super().__init__(
            f"Check-in is only open from {window_minutes} minutes before the class "
            f"until {window_minutes} minutes after it ends",
            400,
            "OUTSIDE_CHECKIN_WINDOW",
            {"window_minutes": window_minutes},
        )


# === Ошибки базы данных ===
class DatabaseError(BaseAppException):
    """Ошибка базы данных"""

    def __init__(
        self,
        message: str = "Database operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, 500, "DATABASE_ERROR", details)


class DatabaseConnectionError(BaseAppException):
    """Ошибка подключения к базе данных"""

    def __init__(self, message: str = "Database connection failed"):
        super().__init__(message, 503, "DATABASE_CONNECTION_ERROR")


class DatabaseTimeoutError(BaseAppException):
    """Таймаут операции с базой данных"""

    def __init__(self, operation: str, timeout: int):
        message = f"Database operation '{operation}' timed out after {timeout}s"
        details = {"operation": operation, "timeout": timeout}
        super().__init__(message, 504, "DATABASE_TIMEOUT", details)


class DatabaseIntegrityError(BaseAppException):
    """Ошибка целостности данных"""

    def __init__(self, constraint: str, details: Optional[Dict[str, Any]] = None):
        message = f"Database integrity constraint violated: {constraint}"
        error_details = {"constraint": constraint}
        if details:
            error_details.update(details)
        super().__init__(message, 409, "DATABASE_INTEGRITY_ERROR", error_details)


# === Ошибки конфигурации ===
class ConfigurationError(BaseAppException):
    """Ошибка конфигурации"""

    def __init__(self, parameter: str, message: str = None):
        message = (
            message or f"Configuration parameter '{parameter}' is invalid or missing"
        )
        details = {"parameter": parameter}
        super().__init__(message, 500, "CONFIGURATION_ERROR", details)
