"""
Error handling for the Pinnacle configuration client.

Every failure surfaced to a configuration script or native caller is a
PinnacleError carrying a structured code, so callers can tell client misuse
apart from compositor-side rejection and from loss of the connection.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """
    Error codes for the Pinnacle configuration client.

    JSON-RPC standard codes (may be returned by the compositor):
    - -32700: Parse error
    - -32600: Invalid request
    - -32601: Method not found
    - -32602: Invalid params
    - -32603: Internal error

    Custom codes (1000-1999):
    - 1000-1099: Transport errors
    - 1100-1199: Call errors
    - 1200-1299: Client misuse
    - 1300-1399: Compositor rejections
    """

    # JSON-RPC standard errors
    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603

    # Transport errors (1000-1099)
    CONNECTION_REFUSED = 1000
    SOCKET_NOT_FOUND = 1001
    WRITE_FAILED = 1002
    READ_FAILED = 1003
    PEER_CLOSED = 1004
    NOT_CONNECTED = 1005

    # Call errors (1100-1199)
    CALL_TIMEOUT = 1100
    CALL_CANCELLED = 1101

    # Client misuse (1200-1299)
    INVALID_ARGUMENT = 1200
    SCRIPT_MARSHAL_FAILED = 1201
    CLIENT_CLOSED = 1202
    SCRIPT_NOT_FOUND = 1203

    # Compositor rejections (1300-1399)
    COMPOSITOR_REJECTED = 1300


class PinnacleError(Exception):
    """Base exception for configuration client errors."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        suggestion: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize client error.

        Args:
            code: Error code from ErrorCode enum
            message: Human-readable error message
            suggestion: Suggested recovery action
            context: Additional context for debugging
        """
        self.code = code
        self.message = message
        self.suggestion = suggestion
        self.context = context or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert error to dictionary for logging and CLI output.

        Returns:
            Error dictionary with code, message, suggestion, and context
        """
        result = {
            "code": self.code.value,
            "message": self.message
        }

        if self.suggestion:
            result["suggestion"] = self.suggestion

        if self.context:
            result["context"] = self.context

        return result


class TransportError(PinnacleError):
    """Connection to the compositor failed or was lost. Fatal for the session."""

    def __init__(
        self,
        reason: str,
        code: ErrorCode = ErrorCode.PEER_CLOSED,
        socket_path: Optional[str] = None
    ):
        context = {"reason": reason}
        if socket_path:
            context["socket_path"] = socket_path

        super().__init__(
            code=code,
            message=f"Compositor connection failed: {reason}",
            suggestion="Ensure Pinnacle is running and its config socket is accessible",
            context=context
        )

    def clone(self) -> "TransportError":
        """Return a fresh error with the same code and context, caused by this one."""
        error = TransportError(self.context["reason"], code=self.code)
        error.context = dict(self.context)
        error.__cause__ = self
        return error


class CallTimeoutError(PinnacleError):
    """A call exceeded the deadline its caller supplied."""

    def __init__(self, method: str, timeout: float, request_id: int):
        super().__init__(
            code=ErrorCode.CALL_TIMEOUT,
            message=f"Call '{method}' timed out after {timeout * 1000:.0f}ms",
            suggestion="Retry the call or raise its timeout",
            context={"method": method, "timeout": timeout, "request_id": request_id}
        )
        self.method = method
        self.timeout = timeout
        self.request_id = request_id


class CompositorRejection(PinnacleError):
    """The compositor understood the request but refused it (e.g. unknown output)."""

    def __init__(
        self,
        method: str,
        remote_code: int,
        remote_message: str,
        data: Any = None
    ):
        context: Dict[str, Any] = {"method": method, "remote_code": remote_code}
        if data is not None:
            context["data"] = data

        super().__init__(
            code=ErrorCode.COMPOSITOR_REJECTED,
            message=f"Compositor rejected '{method}': {remote_message}",
            context=context
        )
        self.method = method
        self.remote_code = remote_code
        self.remote_message = remote_message
        self.data = data


class ClientMisuseError(PinnacleError):
    """The caller passed invalid arguments or used a closed client."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INVALID_ARGUMENT,
        suggestion: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(code=code, message=message, suggestion=suggestion, context=context)


class ScriptMarshalError(ClientMisuseError):
    """A script value cannot be converted into a required request field."""

    def __init__(self, field: str, reason: str, value: Any = None):
        super().__init__(
            message=f"Cannot convert script value for '{field}': {reason}",
            code=ErrorCode.SCRIPT_MARSHAL_FAILED,
            suggestion="Check the argument types passed from the configuration script",
            context={"field": field, "reason": reason, "value": repr(value)}
        )
        self.field = field
        self.reason = reason


def rejection_from_response(method: str, error: Dict[str, Any]) -> CompositorRejection:
    """
    Build a CompositorRejection from a JSON-RPC error object.

    Args:
        method: Method of the request that was rejected
        error: The "error" member of the response

    Returns:
        CompositorRejection carrying the remote code, message and data
    """
    if not isinstance(error, dict):
        return CompositorRejection(method, ErrorCode.INTERNAL_ERROR.value, str(error))

    return CompositorRejection(
        method=method,
        remote_code=error.get("code", ErrorCode.INTERNAL_ERROR.value),
        remote_message=error.get("message", "Unknown error"),
        data=error.get("data")
    )


def misuse_from_validation(operation: str, error: Exception) -> ClientMisuseError:
    """
    Convert a pydantic ValidationError raised while building a request.

    Args:
        operation: API operation being prepared
        error: The validation exception

    Returns:
        ClientMisuseError describing the invalid arguments
    """
    details = []
    errors = getattr(error, "errors", None)
    if callable(errors):
        for item in errors():
            location = ".".join(str(part) for part in item.get("loc", ()))
            details.append(f"{location}: {item.get('msg')}" if location else item.get("msg"))

    return ClientMisuseError(
        message=f"Invalid arguments for {operation}: {'; '.join(details) or error}",
        suggestion="Check the argument types and values",
        context={"operation": operation}
    )
