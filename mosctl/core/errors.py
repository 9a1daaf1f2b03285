"""Domain-specific errors for mosctl."""

from __future__ import annotations


class MosctlError(Exception):
    """Base error for mosctl."""


class InvalidArgumentError(MosctlError):
    """Raised when user input is rejected locally, before anything is sent."""


class ConfigError(MosctlError):
    """Raised when the settings file does not conform to schema."""


class RemoteError(MosctlError):
    """Raised when the device answers a call with a nonzero status."""

    def __init__(self, message: str, *, status: int, status_msg: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.status_msg = status_msg


class TransportError(MosctlError):
    """Base transport error."""


class TransportConnectError(TransportError):
    """Raised when a channel to the device cannot be opened."""


class TransportSendError(TransportError):
    """Raised when a frame cannot be written or read."""


class TransportTimeoutError(TransportError):
    """Raised when a call does not complete before its deadline."""


class OperationCancelledError(MosctlError):
    """Raised when the caller cancels an in-flight blocking call."""


class HardwareIOError(MosctlError):
    """Raised when a GPIO line write fails; the boot sequence must restart."""


class ProtocolError(MosctlError):
    """Raised on malformed chunks, envelopes or archive contents."""


class ServiceError(MosctlError):
    """Raised when the build service answers with an unexpected HTTP status."""

    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"error response: {status_code}: {body}")
        self.status_code = status_code
        self.body = body


class PackagingError(MosctlError):
    """Raised when the source tree cannot be packaged for a remote build."""


class LocalIOError(MosctlError):
    """Raised when a local file cannot be read or written."""


class BuildFailedError(MosctlError):
    """Raised when the build service ran the build and it failed."""


def describe_error(exc: BaseException) -> str:
    """Render an error together with its chain of causes."""
    parts: list[str] = []
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        text = str(current) or type(current).__name__
        if not parts or text not in parts[-1]:
            parts.append(text)
        current = current.__cause__
    return ": ".join(parts)
