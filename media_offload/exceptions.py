"""
Custom exceptions for media offload orchestration.

Item-level problems are never raised: they are recorded on the session as
failed items. Only systemic conditions (store unavailable, nothing eligible,
permanent configuration errors) surface as exceptions to the caller of
``start``/``tick``.
"""


class OffloadError(Exception):
    """Base exception for all media offload errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class SessionNotFoundError(OffloadError):
    """Raised when a session does not exist or has expired."""

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}", {"session_id": session_id})
        self.session_id = session_id


class SessionStateError(OffloadError):
    """Raised when a mutation is attempted on a session in a terminal state."""

    def __init__(self, session_id: str, status: str):
        super().__init__(
            f"Session {session_id} is {status}; no further changes are accepted",
            {"session_id": session_id, "status": status},
        )
        self.session_id = session_id
        self.status = status


class StoreUnavailableError(OffloadError):
    """Raised when the session store cannot be read or written."""

    def __init__(self, operation: str, cause: Exception | None = None):
        details = {"operation": operation}
        if cause:
            details["cause"] = str(cause)
        super().__init__(f"Session store unavailable during {operation}", details)
        self.operation = operation
        self.cause = cause


class EligibilityEmptyError(OffloadError):
    """Raised when a job is started but no asset qualifies."""

    def __init__(self, kind: str, candidates: int = 0):
        super().__init__(
            f"No assets eligible for {kind} ({candidates} candidates examined)",
            {"kind": kind, "candidates": candidates},
        )
        self.kind = kind
        self.candidates = candidates


class AssetNotMigratedError(OffloadError):
    """Raised when a remote-only operation targets an asset that was never offloaded."""

    def __init__(self, asset_id: str):
        super().__init__(f"Asset is not offloaded to remote storage: {asset_id}", {"asset_id": asset_id})
        self.asset_id = asset_id


class ConfigurationError(OffloadError):
    """Raised for permanent configuration problems (missing credentials, bad region)."""

    def __init__(self, component: str, errors: list[str]):
        super().__init__(
            f"{component} is not configured: " + "; ".join(errors),
            {"component": component, "errors": list(errors)},
        )
        self.component = component
        self.errors = list(errors)


class TransportError(OffloadError):
    """Base class for failures reported by a remote service client."""

    def __init__(
        self,
        service: str,
        reason: str,
        status_code: int | None = None,
        cause: Exception | None = None,
    ):
        details: dict = {"service": service, "reason": reason}
        if status_code is not None:
            details["status_code"] = status_code
        if cause:
            details["cause"] = str(cause)
        message = f"{service} request failed: {reason}"
        if status_code is not None:
            message = f"{service} request failed ({status_code}): {reason}"
        super().__init__(message, details)
        self.service = service
        self.reason = reason
        self.status_code = status_code
        self.cause = cause


class TransientTransportError(TransportError):
    """Network, timeout, or 5xx failure. Safe to retry."""


class PermanentTransportError(TransportError):
    """Request rejected by the service. Retrying will not help."""


class AuthenticationError(PermanentTransportError):
    """Credentials were rejected by the remote service."""

    def __init__(self, service: str, reason: str = "credentials rejected", status_code: int | None = None):
        super().__init__(service, reason, status_code)


class StorageIOError(OffloadError):
    """Raised when a local file operation fails."""

    def __init__(self, operation: str, path: str | None = None, cause: Exception | None = None):
        details = {"operation": operation}
        if path:
            details["path"] = path
        if cause:
            details["cause"] = str(cause)
        message = f"Storage I/O error during {operation}"
        if path:
            message += f": {path}"
        super().__init__(message, details)
        self.operation = operation
        self.path = path
        self.cause = cause


class QueueError(OffloadError):
    """Raised when the durable optimization queue cannot be used."""

    def __init__(self, operation: str, cause: Exception | None = None):
        details = {"operation": operation}
        if cause:
            details["cause"] = str(cause)
        super().__init__(f"Optimization queue error during {operation}", details)
        self.operation = operation
        self.cause = cause
