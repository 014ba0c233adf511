"""Compensation stack for provisioning rollback."""

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

logger = logging.getLogger(__name__)


@dataclass
class Compensation:
    """Undo step for one external resource."""
    description: str
    action: Callable[[], None]
    resource_id: Optional[str] = None


@dataclass
class CompensationFailure:
    """A compensation that raised during unwind."""
    description: str
    resource_id: Optional[str]
    error: str

    def __str__(self) -> str:
        resource = f" [{self.resource_id}]" if self.resource_id else ''
        return f"{self.description}{resource}: {self.error}"


@dataclass
class CompensationStack:
    """Undo steps recorded as resources are created, unwound newest first."""
    entries: list[Compensation] = field(default_factory=list)

    def record(self, description: str, action: Callable[[], None],
               resource_id: Optional[str] = None) -> None:
        self.entries.append(Compensation(description, action, resource_id))

    def __len__(self) -> int:
        return len(self.entries)

    def unwind(self) -> list[CompensationFailure]:
        """Run every compensation in reverse order.

        A failing compensation is logged and collected; the rest still run.
        The stack is empty afterwards.
        """
        failures = []
        while self.entries:
            entry = self.entries.pop()
            logger.info(f"Rollback: {entry.description}")
            try:
                entry.action()
            except Exception as e:  # pylint: disable=broad-except
                logger.exception(f"Rollback step failed: {entry.description}")
                failures.append(CompensationFailure(entry.description, entry.resource_id, str(e)))
        return failures
