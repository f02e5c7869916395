"""
Name: Typed Backend Exceptions

Responsibilities:
  - Give internal failures a stable error_code and an error_id for log correlation
  - Separate fatal startup errors (config, store, bind) from per-request errors
  - Keep messages human-readable without leaking secrets

Collaborators:
  - api/exception_handlers.py: maps DatabaseError to HTTP problems
  - lifecycle/runner.py: turns StartupError into exit status 1
  - crosscutting/logger.py
"""

from __future__ import annotations

from uuid import uuid4


class VidshareError(Exception):
    """Base for every internal error raised by the service."""

    error_code: str = "VIDSHARE_ERROR"

    def __init__(
        self,
        message: str,
        error_id: str | None = None,
        original_error: Exception | None = None,
    ):
        self.message = message
        self.error_id = error_id or str(uuid4())
        self.original_error = original_error
        super().__init__(message)


class DatabaseError(VidshareError):
    """Store failures surfacing inside a request (query, timeout, pool)."""

    error_code: str = "DATABASE_ERROR"


# ---------------------------------------------------------------------------
# Fatal startup errors: the process exits with status 1 when one escapes.
# ---------------------------------------------------------------------------
class StartupError(VidshareError):
    error_code: str = "STARTUP_ERROR"


class ConfigurationError(StartupError):
    error_code: str = "CONFIGURATION_ERROR"


class MissingConfigurationError(ConfigurationError):
    """A required setting is absent or empty."""

    error_code: str = "MISSING_CONFIGURATION"

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Missing required configuration: {key}")


class DataStoreConnectionError(StartupError):
    error_code: str = "DATA_STORE_CONNECTION_ERROR"


class PipelineAssemblyError(StartupError):
    """The declared stage plan violates an ordering rule."""

    error_code: str = "PIPELINE_ASSEMBLY_ERROR"


class PortResolutionError(StartupError):
    error_code: str = "PORT_RESOLUTION_ERROR"


class PortBindError(StartupError):
    """Binding the resolved port failed."""

    error_code: str = "PORT_BIND_ERROR"

    def __init__(
        self,
        port: int,
        *,
        in_use: bool,
        original_error: Exception | None = None,
    ):
        self.port = port
        self.in_use = in_use
        if in_use:
            message = f"Port {port} is already in use"
        else:
            message = f"Could not bind port {port}: {original_error}"
        super().__init__(message, original_error=original_error)
