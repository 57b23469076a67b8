"""User-triggered retry support."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass


@dataclass(frozen=True)
class RetryableAction:
    """A failed, repeatable operation captured with all of its arguments."""

    name: str
    operation: Callable[[], Awaitable[object]]

    async def __call__(self) -> object:
        return await self.operation()


@dataclass
class RetrySlot:
    """Holds at most one retryable action."""

    action: RetryableAction | None = None

    def set(self, action: RetryableAction) -> None:
        """Replace the remembered action."""
        self.action = action

    def clear(self) -> None:
        self.action = None

    @property
    def is_empty(self) -> bool:
        return self.action is None

    async def invoke(self) -> bool:
        """Run the remembered action once; the slot keeps it afterwards."""
        if self.action is None:
            return False
        await self.action()
        return True
