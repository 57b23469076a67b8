"""Domain models for materialized job results."""

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

from tona.domain.errors import AppError


class ResultSource(str, Enum):
    INLINE = "inline"
    REMOTE = "remote"


@dataclass(frozen=True)
class ResultImage:
    """A decoded, verified result image."""

    content: bytes
    width: int
    height: int
    format: str | None
    media_type: str


@dataclass(frozen=True)
class DownloadOutcome:
    """Outcome of fetching a single result URL."""

    index: int
    url: str
    image: ResultImage | None = None
    error: AppError | None = None

    @property
    def ok(self) -> bool:
        return self.image is not None


@dataclass(frozen=True)
class ResultSet:
    """Final artifacts of a completed job."""

    job_id: str
    source: ResultSource
    images: tuple[ResultImage, ...]
    requested: int
    failed: int = 0

    @property
    def download_progress(self) -> float:
        """Share of requested items that have been accounted for."""
        if self.requested == 0:
            return 1.0
        return (len(self.images) + self.failed) / self.requested

    @classmethod
    def inline(cls, job_id: str, image: ResultImage) -> "ResultSet":
        return cls(
            job_id=job_id,
            source=ResultSource.INLINE,
            images=(image,),
            requested=1,
        )

    @classmethod
    def from_outcomes(
        cls, job_id: str, outcomes: Iterable[DownloadOutcome]
    ) -> "ResultSet":
        """Aggregate per-URL outcomes, counting successes and failures apart."""
        ordered = sorted(outcomes, key=lambda outcome: outcome.index)
        images = tuple(outcome.image for outcome in ordered if outcome.image)
        return cls(
            job_id=job_id,
            source=ResultSource.REMOTE,
            images=images,
            requested=len(ordered),
            failed=len(ordered) - len(images),
        )
