"""Error taxonomy, error tracking and retry helpers for the MCP chat gateway."""

import asyncio
import logging
import traceback
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class MCPError(Exception):
    """Base exception class for MCP-related errors."""
    def __init__(self, message: str, error_code: str = "MCP_ERROR", details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(MCPError):
    """Exception for configuration-related errors."""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CONFIG_ERROR", details)


class ConnectionError(MCPError):
    """Transport spawn or handshake failure for a tool server."""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CONNECTION_ERROR", details)


class ServerNotFoundError(MCPError):
    """The server id is neither connected nor configured."""
    def __init__(self, server_id: str, details: Optional[Dict[str, Any]] = None):
        self.server_id = server_id
        super().__init__(f'Server "{server_id}" not found', "SERVER_NOT_FOUND", details)


class ToolNotFoundError(MCPError):
    """No connected server advertises the requested tool."""
    def __init__(self, tool_name: str, details: Optional[Dict[str, Any]] = None):
        self.tool_name = tool_name
        super().__init__(f"Tool not found: {tool_name}", "TOOL_NOT_FOUND", details)


class ToolValidationError(MCPError):
    """Tool arguments failed schema validation."""
    def __init__(self, tool_name: str, violations: List[Any], details: Optional[Dict[str, Any]] = None):
        self.tool_name = tool_name
        self.violations = list(violations)
        reasons = "; ".join(str(v) for v in self.violations) or "invalid arguments"
        super().__init__(f"Invalid input for tool {tool_name}: {reasons}", "VALIDATION_ERROR", details)


class ToolExecutionError(MCPError):
    """Exception for tool execution errors."""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "TOOL_EXEC_ERROR", details)


class ApprovalTimeoutError(MCPError):
    """No approval decision arrived before the deadline."""
    def __init__(self, tool_name: str, timeout: float, details: Optional[Dict[str, Any]] = None):
        self.tool_name = tool_name
        self.timeout = timeout
        super().__init__(
            f"Approval for tool {tool_name} timed out after {timeout:g}s", "APPROVAL_TIMEOUT", details
        )


@dataclass(frozen=True)
class SchemaCompileWarning:
    """Non-fatal diagnostic emitted while compiling a tool schema."""

    path: str
    message: str

    def __str__(self) -> str:
        return f"{self.path or '<root>'}: {self.message}"


class ErrorHandler:
    """Per-server error tracking and retry with exponential backoff."""

    def __init__(self, max_errors_per_minute: int = 10):
        self.error_counts: Dict[str, int] = {}
        self.error_timestamps: Dict[str, List[datetime]] = {}
        self.max_errors_per_minute = max_errors_per_minute
        self.error_window = timedelta(minutes=1)

    def handle_error(self, server_name: str, error: Exception, context: str = "") -> Dict[str, Any]:
        """Log and track an error, returning a summary of it."""
        error_info = self._log_error(server_name, error, context)
        self._track_error(server_name)
        error_info["recent_errors"] = len(self.error_timestamps.get(server_name, []))
        return error_info

    def _log_error(self, server_name: str, error: Exception, context: str) -> Dict[str, Any]:
        """Log error details and return error information."""
        error_info = {
            "server_name": server_name,
            "error_type": type(error).__name__,
            "error_message": str(error),
            "context": context,
            "timestamp": datetime.now().isoformat(),
            "traceback": traceback.format_exc(),
        }

        # Log with appropriate level based on error type
        if isinstance(error, ConfigurationError):
            logger.error(f"Server {server_name} - {error_info['error_type']}: {error_info['error_message']}")
        elif isinstance(error, ConnectionError):
            logger.warning(f"Server {server_name} - {error_info['error_type']}: {error_info['error_message']}")
        elif isinstance(error, (ToolExecutionError, ToolValidationError, ToolNotFoundError)):
            logger.info(f"Server {server_name} - {error_info['error_type']}: {error_info['error_message']}")
        else:
            logger.error(f"Server {server_name} - Unexpected error: {error_info['error_message']}")

        return error_info

    def _track_error(self, server_name: str) -> None:
        """Track error occurrences inside a sliding window."""
        now = datetime.now()
        self.error_counts[server_name] = self.error_counts.get(server_name, 0) + 1
        cutoff_time = now - self.error_window
        self.error_timestamps[server_name] = [
            ts for ts in self.error_timestamps.get(server_name, []) if ts > cutoff_time
        ] + [now]

    def get_server_error_stats(self, server_name: str) -> Dict[str, Any]:
        """Get error statistics for a specific server."""
        return {
            "total_errors": self.error_counts.get(server_name, 0),
            "recent_errors": len(self.error_timestamps.get(server_name, [])),
        }

    def reset_error_tracking(self, server_name: str) -> None:
        """Reset error tracking for a specific server."""
        self.error_counts.pop(server_name, None)
        self.error_timestamps.pop(server_name, None)

    def should_circuit_break(self, server_name: str) -> bool:
        """True when a server is failing faster than the tolerated rate."""
        return len(self.error_timestamps.get(server_name, [])) > self.max_errors_per_minute

    async def retry_with_backoff(
        self,
        func: Callable[[], Awaitable[T]],
        *,
        max_retries: int = 3,
        base_delay: float = 1.0,
        should_continue: Optional[Callable[[], bool]] = None,
        on_retry: Optional[Callable[[int, float, Exception], None]] = None,
        label: str = "operation",
    ) -> T:
        """Run ``func``; on failure retry up to ``max_retries`` times, doubling the delay.

        ``should_continue`` is checked after each sleep. When it returns False the
        series is abandoned and the last error is raised.
        """
        for attempt in range(max_retries + 1):
            try:
                return await func()
            except Exception as e:
                if attempt == max_retries:
                    logger.error(f"Max retries exceeded for {label}: {e}")
                    raise

                delay = base_delay * (2 ** attempt)
                logger.warning(
                    f"Attempt {attempt + 1} failed for {label}, retrying in {delay:g}s "
                    f"({attempt + 1}/{max_retries}): {e}"
                )
                if on_retry:
                    on_retry(attempt + 1, delay, e)
                await asyncio.sleep(delay)
                if should_continue is not None and not should_continue():
                    logger.info(f"Retry series for {label} abandoned")
                    raise
        raise AssertionError("unreachable")  # pragma: no cover
