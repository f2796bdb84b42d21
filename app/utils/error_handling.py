"""
Error Handling Module for HRFlow

Centralized error handling with:
- Custom exception hierarchy (not found, ineligible, invalid state,
  validation, authorization)
- Standardized error responses
- Error logging
- Database error mapping

Nothing here retries. Every failure is terminal for the triggering call and
scoped to the single request being processed.
"""

from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Optional, Union
from uuid import UUID
import logging

from fastapi import FastAPI, Request, HTTPException, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import (
    SQLAlchemyError,
    IntegrityError,
    OperationalError,
    DataError,
)
from starlette.exceptions import HTTPException as StarletteHTTPException

# Configure logging
logger = logging.getLogger("hrflow.errors")

CENT = Decimal("0.01")


class ErrorCode(str, Enum):
    """Standardized error codes for the application"""

    # Validation Errors (422)
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    MISSING_FIELD = "MISSING_FIELD"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    INVALID_DATE_RANGE = "INVALID_DATE_RANGE"
    POLICY_MISCONFIGURED = "POLICY_MISCONFIGURED"

    # Authentication/Authorization Errors (401/403)
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    TOKEN_INVALID = "TOKEN_INVALID"
    INSUFFICIENT_PERMISSIONS = "INSUFFICIENT_PERMISSIONS"
    SELF_APPROVAL_FORBIDDEN = "SELF_APPROVAL_FORBIDDEN"

    # Resource Errors (404/409)
    NOT_FOUND = "NOT_FOUND"
    EMPLOYEE_NOT_FOUND = "EMPLOYEE_NOT_FOUND"
    REQUEST_NOT_FOUND = "REQUEST_NOT_FOUND"
    POLICY_NOT_FOUND = "POLICY_NOT_FOUND"
    RESOURCE_CONFLICT = "RESOURCE_CONFLICT"
    DUPLICATE_ENTRY = "DUPLICATE_ENTRY"

    # Business Logic Errors (409/422)
    BUSINESS_RULE_VIOLATION = "BUSINESS_RULE_VIOLATION"
    INELIGIBLE = "INELIGIBLE"
    INVALID_STATE = "INVALID_STATE"
    ALREADY_PROCESSED = "ALREADY_PROCESSED"

    # Database Errors (500)
    DATABASE_ERROR = "DATABASE_ERROR"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    DATA_INTEGRITY_ERROR = "DATA_INTEGRITY_ERROR"

    # Internal Errors (500)
    INTERNAL_ERROR = "INTERNAL_ERROR"


class AppException(Exception):
    """Base exception for all application exceptions"""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
        field: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.field = field
        self.original_error = original_error
        self.timestamp = datetime.utcnow()
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON response"""
        result = {
            "code": self.code.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat() + "Z",
        }
        if self.field:
            result["field"] = self.field
        if self.details:
            result["details"] = self.details
        return result


# ============================================================================
# Validation Exceptions
# ============================================================================

class ValidationException(AppException):
    """Base validation exception"""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        code: ErrorCode = ErrorCode.VALIDATION_ERROR,
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details,
            field=field,
        )


class MissingFieldException(ValidationException):
    """A field required for this operation was not supplied"""

    def __init__(self, field: str, message: Optional[str] = None):
        super().__init__(
            message=message or f"'{field}' is required",
            field=field,
            code=ErrorCode.MISSING_FIELD,
        )


class InvalidAmountException(ValidationException):
    """Invalid monetary amount"""

    def __init__(self, amount: Any, field: str = "amount", message: Optional[str] = None):
        super().__init__(
            message=message or f"Invalid amount: {amount}. Amount must be a positive number.",
            field=field,
            code=ErrorCode.INVALID_AMOUNT,
            details={"provided_amount": str(amount)},
        )


class InvalidDateRangeException(ValidationException):
    """Invalid date range"""

    def __init__(self, start_date: str, end_date: str, message: Optional[str] = None):
        super().__init__(
            message=message or f"Invalid date range: {start_date} to {end_date}. Start date must be before end date.",
            code=ErrorCode.INVALID_DATE_RANGE,
            details={"start_date": start_date, "end_date": end_date},
        )


class PolicyConfigurationException(ValidationException):
    """Lending policy parameters that cannot produce a repayment schedule"""

    def __init__(self, message: str, field: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            field=field,
            code=ErrorCode.POLICY_MISCONFIGURED,
            details=details,
        )


# ============================================================================
# Authentication/Authorization Exceptions
# ============================================================================

class AuthenticationException(AppException):
    """Base authentication exception"""

    def __init__(
        self,
        message: str = "Authentication required",
        code: ErrorCode = ErrorCode.UNAUTHORIZED,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_401_UNAUTHORIZED,
            details=details,
        )


class AuthorizationException(AppException):
    """Authorization denied exception"""

    def __init__(
        self,
        message: str = "Permission denied",
        required_permission: Optional[str] = None,
        code: ErrorCode = ErrorCode.FORBIDDEN,
        details: Optional[Dict[str, Any]] = None,
    ):
        _details = details or {}
        if required_permission:
            _details["required_permission"] = required_permission
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_403_FORBIDDEN,
            details=_details,
        )


class InsufficientPermissionsException(AuthorizationException):
    """Insufficient permissions"""

    def __init__(self, required_permission: str, user_role: Optional[str] = None):
        details = {}
        if user_role:
            details["current_role"] = user_role
        super().__init__(
            message=f"Insufficient permissions. Required: {required_permission}",
            required_permission=required_permission,
            code=ErrorCode.INSUFFICIENT_PERMISSIONS,
            details=details,
        )


class SelfApprovalException(AuthorizationException):
    """An actor tried to act on their own advance request"""

    def __init__(self, request_id: Union[str, UUID], escalated_to: str):
        super().__init__(
            message=(
                "You cannot act on your own salary advance request. "
                f"It has been escalated to {escalated_to}."
            ),
            code=ErrorCode.SELF_APPROVAL_FORBIDDEN,
            details={"request_id": str(request_id), "escalated_to": escalated_to},
        )


# ============================================================================
# Resource Exceptions
# ============================================================================

class NotFoundException(AppException):
    """Resource not found exception"""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[Union[str, UUID]] = None,
        message: Optional[str] = None,
        code: ErrorCode = ErrorCode.NOT_FOUND,
    ):
        if message is None:
            if resource_id:
                message = f"{resource_type} with ID '{resource_id}' not found"
            else:
                message = f"{resource_type} not found"
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource_type": resource_type, "resource_id": str(resource_id) if resource_id else None},
        )


class EmployeeNotFoundException(NotFoundException):
    """Employee not found"""

    def __init__(self, employee_ref: Union[str, UUID]):
        super().__init__(
            resource_type="Employee",
            resource_id=employee_ref,
            code=ErrorCode.EMPLOYEE_NOT_FOUND,
        )


class AdvanceRequestNotFoundException(NotFoundException):
    """Salary advance request not found"""

    def __init__(self, request_id: Union[str, UUID]):
        super().__init__(
            resource_type="Salary advance request",
            resource_id=request_id,
            code=ErrorCode.REQUEST_NOT_FOUND,
        )


class PolicyNotFoundException(NotFoundException):
    """Lending policy not found"""

    def __init__(self, policy_id: Optional[Union[str, UUID]] = None):
        super().__init__(
            resource_type="Salary advance policy",
            resource_id=policy_id,
            message=None if policy_id else "No active salary advance policy found",
            code=ErrorCode.POLICY_NOT_FOUND,
        )


class ConflictException(AppException):
    """Resource conflict exception"""

    def __init__(
        self,
        message: str,
        resource_type: Optional[str] = None,
        code: ErrorCode = ErrorCode.RESOURCE_CONFLICT,
        details: Optional[Dict[str, Any]] = None,
    ):
        _details = details or {}
        if resource_type:
            _details["resource_type"] = resource_type
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            details=_details,
        )


class InvalidStateException(ConflictException):
    """The request is not in a status that allows the attempted action"""

    def __init__(
        self,
        message: str,
        current_status: Optional[str] = None,
        attempted_action: Optional[str] = None,
        code: ErrorCode = ErrorCode.INVALID_STATE,
    ):
        details = {}
        if current_status:
            details["current_status"] = current_status
        if attempted_action:
            details["attempted_action"] = attempted_action
        super().__init__(
            message=message,
            resource_type="Salary advance request",
            code=code,
            details=details,
        )


class AlreadyProcessedException(InvalidStateException):
    """A decision was attempted on a request that has already been decided"""

    def __init__(self, current_status: Optional[str] = None, attempted_action: Optional[str] = None):
        super().__init__(
            message="Invalid status transition or request has already been processed",
            current_status=current_status,
            attempted_action=attempted_action,
            code=ErrorCode.ALREADY_PROCESSED,
        )


# ============================================================================
# Business Logic Exceptions
# ============================================================================

class BusinessRuleException(AppException):
    """Business rule violation exception"""

    def __init__(
        self,
        message: str,
        rule: Optional[str] = None,
        code: ErrorCode = ErrorCode.BUSINESS_RULE_VIOLATION,
        details: Optional[Dict[str, Any]] = None,
    ):
        _details = details or {}
        if rule:
            _details["violated_rule"] = rule
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=_details,
        )


class IneligibleException(BusinessRuleException):
    """Employee is not eligible for the requested advance"""

    def __init__(self, reason: str, details: Optional[Dict[str, Any]] = None):
        self.reason = reason
        super().__init__(
            message=reason,
            rule="SALARY_ADVANCE_ELIGIBILITY",
            code=ErrorCode.INELIGIBLE,
            details=details,
        )


# ============================================================================
# Exception Handlers
# ============================================================================

def create_error_response(
    code: ErrorCode,
    message: str,
    status_code: int,
    details: Optional[Dict[str, Any]] = None,
    field: Optional[str] = None,
) -> JSONResponse:
    """Create a standardized error response"""
    content = {
        "detail": {
            "code": code.value,
            "message": message,
            "timestamp": datetime.utcnow().isoformat() + "Z",
        }
    }
    if field:
        content["detail"]["field"] = field
    if details:
        content["detail"]["details"] = details

    return JSONResponse(status_code=status_code, content=content)


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handle AppException"""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"AppException: {exc.code.value} - {exc.message}",
        extra={
            "code": exc.code.value,
            "path": request.url.path,
            "method": request.method,
            "details": exc.details,
        },
        exc_info=exc.original_error,
    )

    return create_error_response(
        code=exc.code,
        message=exc.message,
        status_code=exc.status_code,
        details=exc.details,
        field=exc.field,
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTPException"""
    # Map status codes to error codes
    code_map = {
        400: ErrorCode.INVALID_INPUT,
        401: ErrorCode.UNAUTHORIZED,
        403: ErrorCode.FORBIDDEN,
        404: ErrorCode.NOT_FOUND,
        409: ErrorCode.RESOURCE_CONFLICT,
        422: ErrorCode.VALIDATION_ERROR,
        500: ErrorCode.INTERNAL_ERROR,
    }

    error_code = code_map.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)

    logger.warning(
        f"HTTPException: {exc.status_code} - {message}",
        extra={"path": request.url.path, "method": request.method},
    )

    return create_error_response(
        code=error_code,
        message=message,
        status_code=exc.status_code,
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle Pydantic validation errors"""
    errors = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"])
        errors.append({
            "field": field,
            "message": error["msg"],
            "type": error["type"],
        })

    logger.warning(
        f"ValidationError: {len(errors)} validation errors",
        extra={"path": request.url.path, "method": request.method, "errors": errors},
    )

    return create_error_response(
        code=ErrorCode.VALIDATION_ERROR,
        message="Request validation failed",
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        details={"errors": errors},
    )


async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Handle SQLAlchemy errors"""
    error_message = "A database error occurred"
    error_code = ErrorCode.DATABASE_ERROR
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    if isinstance(exc, IntegrityError):
        error_message = "Data integrity constraint violated"
        error_code = ErrorCode.DATA_INTEGRITY_ERROR
        error_str = str(exc.orig).lower() if exc.orig else ""
        if "unique" in error_str or "duplicate" in error_str:
            error_message = "A record with this value already exists"
            error_code = ErrorCode.DUPLICATE_ENTRY
            status_code = status.HTTP_409_CONFLICT
        elif "foreign key" in error_str:
            error_message = "Referenced record does not exist"
            status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    elif isinstance(exc, OperationalError):
        error_message = "Database operation failed"
        error_code = ErrorCode.CONNECTION_ERROR
    elif isinstance(exc, DataError):
        error_message = "Invalid data format for database"
        status_code = status.HTTP_422_UNPROCESSABLE_ENTITY

    logger.error(
        f"SQLAlchemyError: {type(exc).__name__} - {str(exc)}",
        extra={"path": request.url.path, "method": request.method},
        exc_info=True,
    )

    return create_error_response(
        code=error_code,
        message=error_message,
        status_code=status_code,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unhandled exceptions"""
    logger.critical(
        f"UnhandledException: {type(exc).__name__} - {str(exc)}",
        extra={"path": request.url.path, "method": request.method},
        exc_info=True,
    )

    # In production, don't expose internal error details
    return create_error_response(
        code=ErrorCode.INTERNAL_ERROR,
        message="An unexpected error occurred. Please try again later.",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI application"""
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)


# ============================================================================
# Utility Functions
# ============================================================================

def validate_amount(amount: Any, field: str = "amount", allow_zero: bool = False) -> Decimal:
    """Validate a monetary amount and return it as a Decimal"""
    if amount is None or amount == "":
        raise MissingFieldException(field)
    if isinstance(amount, bool):
        raise InvalidAmountException(amount, field)
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidAmountException(amount, field)
    if not value.is_finite() or value < 0 or (not allow_zero and value == 0):
        raise InvalidAmountException(amount, field)
    if value != value.quantize(CENT):
        raise InvalidAmountException(
            amount, field, message=f"Invalid amount: {amount}. At most 2 decimal places are allowed."
        )
    return value


def require_text(value: Optional[str], field: str) -> str:
    """Validate a required free-text field"""
    if value is None or not str(value).strip():
        raise MissingFieldException(field)
    return str(value).strip()


# Export all exceptions for easy importing
__all__ = [
    # Base
    "AppException",
    "ErrorCode",

    # Validation
    "ValidationException",
    "MissingFieldException",
    "InvalidAmountException",
    "InvalidDateRangeException",
    "PolicyConfigurationException",

    # Auth
    "AuthenticationException",
    "AuthorizationException",
    "InsufficientPermissionsException",
    "SelfApprovalException",

    # Resource
    "NotFoundException",
    "EmployeeNotFoundException",
    "AdvanceRequestNotFoundException",
    "PolicyNotFoundException",
    "ConflictException",
    "InvalidStateException",
    "AlreadyProcessedException",

    # Business Logic
    "BusinessRuleException",
    "IneligibleException",

    # Handlers
    "setup_exception_handlers",
    "create_error_response",

    # Utilities
    "validate_amount",
    "require_text",
]
