"""
Typed MCP errors and the classifier mapping raw failures onto them.

Every failure crossing from a transport into the agent loop is an ``MCPError``.
The ``code`` field is the variant tag; variant specific context lives in
``timeout_ms``, ``tool_name`` and ``transport_type``.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

import httpx


class MCPErrorCode(str, Enum):
    """Closed set of MCP error variants."""

    UNKNOWN = "MCP_UNKNOWN"
    CONNECTION_FAILED = "MCP_CONNECTION_FAILED"
    CONNECTION_TIMEOUT = "MCP_CONNECTION_TIMEOUT"
    CONNECTION_CLOSED = "MCP_CONNECTION_CLOSED"
    TOOL_CALL_FAILED = "MCP_TOOL_CALL_FAILED"
    TOOL_NOT_FOUND = "MCP_TOOL_NOT_FOUND"
    INVALID_PARAMS = "MCP_INVALID_PARAMS"
    SERVER_NOT_FOUND = "MCP_SERVER_NOT_FOUND"
    TRANSPORT_ERROR = "MCP_TRANSPORT_ERROR"
    CORS_ERROR = "MCP_CORS_ERROR"
    INITIALIZATION_FAILED = "MCP_INITIALIZATION_FAILED"


@dataclass(eq=False)
class MCPError(RuntimeError):
    """Raised when an MCP operation fails."""

    message: str
    code: MCPErrorCode = MCPErrorCode.UNKNOWN
    server_name: str | None = None
    cause: BaseException | None = None
    timeout_ms: int | None = None
    tool_name: str | None = None
    transport_type: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __post_init__(self) -> None:
        self.args = (self.message,)
        if self.cause is not None:
            self.__cause__ = self.cause

    def __str__(self) -> str:
        return f"MCPError(code={self.code.value}, message={self.message})"

    @classmethod
    def connection(
        cls, message: str, *, server_name: str | None = None, cause: BaseException | None = None
    ) -> "MCPError":
        return cls(
            message, MCPErrorCode.CONNECTION_FAILED, server_name=server_name, cause=cause
        )

    @classmethod
    def connection_closed(
        cls, message: str, *, server_name: str | None = None, cause: BaseException | None = None
    ) -> "MCPError":
        return cls(
            message, MCPErrorCode.CONNECTION_CLOSED, server_name=server_name, cause=cause
        )

    @classmethod
    def timeout(
        cls,
        message: str,
        timeout_ms: int,
        *,
        server_name: str | None = None,
        cause: BaseException | None = None,
    ) -> "MCPError":
        return cls(
            message,
            MCPErrorCode.CONNECTION_TIMEOUT,
            server_name=server_name,
            cause=cause,
            timeout_ms=timeout_ms,
        )

    @classmethod
    def tool_call(
        cls,
        message: str,
        tool_name: str,
        *,
        server_name: str | None = None,
        cause: BaseException | None = None,
    ) -> "MCPError":
        return cls(
            message,
            MCPErrorCode.TOOL_CALL_FAILED,
            server_name=server_name,
            cause=cause,
            tool_name=tool_name,
        )

    @classmethod
    def tool_not_found(cls, tool_name: str, *, server_name: str | None = None) -> "MCPError":
        return cls(
            f"Tool '{tool_name}' is not available",
            MCPErrorCode.TOOL_NOT_FOUND,
            server_name=server_name,
            tool_name=tool_name,
        )

    @classmethod
    def transport(
        cls,
        message: str,
        transport_type: str,
        *,
        server_name: str | None = None,
        cause: BaseException | None = None,
    ) -> "MCPError":
        return cls(
            message,
            MCPErrorCode.TRANSPORT_ERROR,
            server_name=server_name,
            cause=cause,
            transport_type=transport_type,
        )

    @classmethod
    def cors(
        cls, message: str, *, server_name: str | None = None, cause: BaseException | None = None
    ) -> "MCPError":
        return cls(message, MCPErrorCode.CORS_ERROR, server_name=server_name, cause=cause)

    @classmethod
    def unknown(
        cls, message: str, *, server_name: str | None = None, cause: BaseException | None = None
    ) -> "MCPError":
        return cls(message, MCPErrorCode.UNKNOWN, server_name=server_name, cause=cause)

    @classmethod
    def server_not_found(cls, server_name: str) -> "MCPError":
        return cls(
            f"Server '{server_name}' is not configured",
            MCPErrorCode.SERVER_NOT_FOUND,
            server_name=server_name,
        )

    @classmethod
    def invalid_params(
        cls, message: str, *, server_name: str | None = None, cause: BaseException | None = None
    ) -> "MCPError":
        return cls(message, MCPErrorCode.INVALID_PARAMS, server_name=server_name, cause=cause)

    @classmethod
    def initialization_failed(
        cls, message: str, *, server_name: str | None = None, cause: BaseException | None = None
    ) -> "MCPError":
        return cls(
            message, MCPErrorCode.INITIALIZATION_FAILED, server_name=server_name, cause=cause
        )

    def describe(self) -> str:
        """Human readable message including the variant context."""
        parts = [self.message]
        if self.tool_name:
            parts.append(f"tool={self.tool_name}")
        if self.server_name:
            parts.append(f"server={self.server_name}")
        if self.timeout_ms:
            parts.append(f"timeout={self.timeout_ms}ms")
        if self.transport_type:
            parts.append(f"transport={self.transport_type}")
        return " ".join(parts) if len(parts) == 1 else f"{parts[0]} ({', '.join(parts[1:])})"

    def to_json(self) -> dict[str, Any]:
        return {
            "name": type(self).__name__,
            "code": self.code.value,
            "message": self.message,
            "server_name": self.server_name,
            "tool_name": self.tool_name,
            "timeout_ms": self.timeout_ms,
            "transport_type": self.transport_type,
            "timestamp": self.timestamp.isoformat(),
            "cause": None if self.cause is None else str(self.cause),
        }


CORS_MARKERS = ("cors", "access to fetch", "blocked by cors")
DEFAULT_TIMEOUT_KEYWORDS = ("timeout", "超时")
DEFAULT_CONNECT_KEYWORDS = ("connect", "连接")

_TIMEOUT_TYPES: tuple[type[BaseException], ...] = (TimeoutError, httpx.TimeoutException)
_CONNECT_TYPES: tuple[type[BaseException], ...] = (ConnectionError, httpx.ConnectError)


class ErrorClassifier:
    """Maps any raised error onto exactly one MCPError variant."""

    def __init__(
        self,
        timeout_keywords: Sequence[str] = DEFAULT_TIMEOUT_KEYWORDS,
        connect_keywords: Sequence[str] = DEFAULT_CONNECT_KEYWORDS,
    ) -> None:
        self._timeout_keywords = tuple(k.lower() for k in timeout_keywords if k)
        self._connect_keywords = tuple(k.lower() for k in connect_keywords if k)

    def classify(
        self,
        error: BaseException,
        server_name: str | None = None,
        *,
        timeout_ms: int = 0,
    ) -> MCPError:
        if isinstance(error, MCPError):
            return error

        message = str(error) or type(error).__name__
        lowered = message.lower()

        if any(marker in lowered for marker in CORS_MARKERS):
            return MCPError.cors(f"CORS error: {message}", server_name=server_name, cause=error)

        if isinstance(error, _TIMEOUT_TYPES) or any(k in lowered for k in self._timeout_keywords):
            return MCPError.timeout(
                message, timeout_ms, server_name=server_name, cause=error
            )

        if isinstance(error, _CONNECT_TYPES) or any(k in lowered for k in self._connect_keywords):
            return MCPError.connection(message, server_name=server_name, cause=error)

        return MCPError.unknown(message, server_name=server_name, cause=error)


_default_classifier = ErrorClassifier()


def classify_error(
    error: BaseException,
    server_name: str | None = None,
    *,
    timeout_ms: int = 0,
) -> MCPError:
    """Classify an error using the default keyword set."""
    return _default_classifier.classify(error, server_name, timeout_ms=timeout_ms)
