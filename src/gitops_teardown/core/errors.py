"""Error taxonomy.

Not-found is deliberately absent: the client reports it as ``None`` or a
no-op, because a resource that is already gone is a successful teardown.
"""

from __future__ import annotations


class TeardownError(Exception):
    """Base class for all teardown errors."""


class InvalidConfigError(TeardownError):
    """Malformed configuration or resource identifier. Raised before any mutation."""


class ClusterConnectionError(TeardownError):
    """Kubeconfig could not be loaded or the API server is unreachable."""


class ClusterAPIError(TeardownError):
    """Non-retryable API error (forbidden, invalid request, ...)."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class TransientAPIError(ClusterAPIError):
    """Throttling, server-side or network error; retried within the current budget."""


class PartialFailureError(TeardownError):
    """One or more resources in a plan did not reach a successful outcome."""

    def __init__(self, failed: list[str]):
        super().__init__(f"{len(failed)} resource(s) failed to delete: {', '.join(failed)}")
        self.failed = failed
