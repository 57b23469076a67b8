"""Domain models for uploaded image groups."""

from dataclasses import dataclass
from enum import Enum


class GroupSlot(str, Enum):
    """Which of the two image groups an upload belongs to."""

    FIRST = "first"
    SECOND = "second"

    @property
    def endpoint(self) -> str:
        """Path segment of the upload endpoint for this slot."""
        return f"upload/{self.value}-group"


@dataclass(frozen=True)
class UploadGroup:
    """A server-acknowledged batch of images."""

    slot: GroupSlot
    images: tuple[bytes, ...]
    group_id: str

    @property
    def total_bytes(self) -> int:
        return sum(len(image) for image in self.images)
