"""Application-level decorators for cross-cutting concerns."""

from application.decorators.retry import retry_on_transient_failure

__all__ = ["retry_on_transient_failure"]
