import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

log = logging.getLogger(__name__)


@dataclass
class Compensation:
    description: str
    action: Callable[[], Awaitable[None]]


class CompensationStack:
    """Undo actions registered by completed workflow stages, run newest first."""

    def __init__(self):
        self._compensations: list[Compensation] = []

    def __len__(self) -> int:
        return len(self._compensations)

    def push(self, description: str, action: Callable[[], Awaitable[None]]) -> None:
        self._compensations.append(Compensation(description, action))

    async def unwind(self) -> list[str]:
        """Runs every compensation in reverse order.

        A failing compensation is logged and the remaining ones still run; the
        descriptions of failed compensations are returned for the failure report.
        """
        failed = []
        while self._compensations:
            compensation = self._compensations.pop()
            try:
                log.info(f"Compensating: {compensation.description}")
                await compensation.action()
            except Exception as e:
                log.error(f"Compensation '{compensation.description}' failed: {e}", exc_info=True)
                failed.append(compensation.description)
        return failed
