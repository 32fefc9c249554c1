from typing import Any, Dict, Optional


class SidecarError(Exception):
    """Base exception for all Sidecar errors with structured error information."""

    def __init__(
        self,
        message: str,
        code: str = "SIDECAR_ERROR",
        recoverable: bool = True,
        suggested_action: str = "retry",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.code = code
        self.recoverable = recoverable
        self.suggested_action = suggested_action
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for API responses."""
        return {
            "code": self.code,
            "message": str(self),
            "recoverable": self.recoverable,
            "suggested_action": self.suggested_action,
            "details": self.details
        }


class CommandSyntaxError(SidecarError):
    """Malformed or unterminated argument literal.

    Raised inside the argument evaluator and recorded on the command by the
    scanner; it never escapes a scan.
    """
    def __init__(self, message: str, position: Optional[int] = None, **kwargs):
        details = {"position": position} if position is not None else {}
        super().__init__(
            message,
            code="PARSE_ERROR",
            recoverable=True,
            suggested_action="fix_command_syntax",
            details=details,
            **kwargs
        )
        self.position = position


# Routing errors: raised by the router, converted to failed results at the engine boundary
class RoutingError(SidecarError):
    """A call could not be routed to a handler."""
    def __init__(self, message: str, code: str = "ROUTING_ERROR", **kwargs):
        kwargs.setdefault("suggested_action", "check_command")
        super().__init__(message, code=code, recoverable=True, **kwargs)


class ServerNotActiveError(RoutingError):
    """No internal table or provider is registered under the server id."""
    def __init__(self, server: str, **kwargs):
        super().__init__(
            f"Server '{server}' not active",
            code="SERVER_NOT_ACTIVE",
            suggested_action="check_server_name",
            details={"server": server},
            **kwargs
        )


class UnknownToolError(RoutingError):
    """Tool not found on the resolved server."""
    def __init__(self, server: str, tool: str, **kwargs):
        super().__init__(
            f"Unknown {server} tool: {tool}",
            code="UNKNOWN_TOOL",
            details={"server": server, "tool": tool},
            **kwargs
        )


class MissingArgumentError(RoutingError):
    """A required tool argument was not supplied."""
    def __init__(self, tool: str, argument: str, **kwargs):
        super().__init__(
            f"Tool '{tool}' requires argument '{argument}'",
            code="MISSING_ARGUMENT",
            details={"tool": tool, "argument": argument},
            **kwargs
        )


class AccessDeniedError(RoutingError):
    """A resolved path escapes the configured project boundary."""
    def __init__(self, path: str, **kwargs):
        super().__init__(
            f"Access denied: '{path}' is outside the project root",
            code="ACCESS_DENIED",
            suggested_action="use_project_relative_path",
            details={"path": path},
            **kwargs
        )


class ToolExecutionError(SidecarError):
    """An internal tool ran but could not produce a result."""
    def __init__(self, message: str, tool: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            code="TOOL_ERROR",
            recoverable=True,
            suggested_action="check_tool_arguments",
            details={"tool": tool} if tool else None,
            **kwargs
        )


class ProviderError(SidecarError):
    """The provider reported a tool error through its error flag."""
    def __init__(self, message: str, server: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            code="PROVIDER_ERROR",
            recoverable=True,
            suggested_action="inspect_provider_output",
            details={"server": server} if server else None,
            **kwargs
        )


class TransportError(SidecarError):
    """The call to a provider or remote sidecar could not complete."""
    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            code="TRANSPORT_ERROR",
            recoverable=True,
            suggested_action="check_connection",
            **kwargs
        )


class EngineBusyError(SidecarError):
    """A run was requested while another one is in flight."""
    def __init__(self, message: str = "Execution engine is busy", **kwargs):
        super().__init__(
            message,
            code="ENGINE_BUSY",
            recoverable=True,
            suggested_action="retry_later",
            **kwargs
        )


class BatchStateError(SidecarError):
    """Batch operation not legal in the current batch state."""
    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            code="BATCH_STATE_ERROR",
            recoverable=True,
            suggested_action="check_batch_state",
            **kwargs
        )


class NoChangesError(SidecarError):
    """A review was requested but the working tree has no changes."""
    def __init__(self, message: str = "No modified files found.", **kwargs):
        super().__init__(
            message,
            code="NO_CHANGES",
            recoverable=True,
            suggested_action="modify_files_first",
            **kwargs
        )


def describe_error(error: BaseException) -> str:
    """Return a user-facing message for any exception raised during a call."""
    message = str(error).strip()
    if isinstance(error, SidecarError):
        return message or error.code
    return message or type(error).__name__
