from .dcv_session_orchestrator import DcvSessionOptions, DcvSessionOrchestrator

__all__ = [
    "DcvSessionOptions",
    "DcvSessionOrchestrator",
]
