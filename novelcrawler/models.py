"""
Data model shared by the scraper, jobs, workers and the pool.

Worker messages are plain dicts (see ``JobResult.to_message``); everything
else is a dataclass.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class ListingItem:
    """One novel summary from a listing page."""

    id: str
    title: str
    url: str
    cover_url: str = ""
    genres: List[str] = field(default_factory=list)
    chapter_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ListingItem":
        return cls(
            id=data["id"],
            title=data["title"],
            url=data.get("url", ""),
            cover_url=data.get("cover_url", ""),
            genres=list(data.get("genres") or []),
            chapter_count=int(data.get("chapter_count") or 0),
        )


@dataclass(frozen=True)
class JobRequest:
    id: str
    title: str = ""

    @classmethod
    def from_listing(cls, item: ListingItem) -> "JobRequest":
        return cls(id=item.id, title=item.title)


@dataclass(frozen=True)
class ChapterRef:
    title: str
    url: str


@dataclass(frozen=True)
class ChapterContent:
    title: str
    body: str


@dataclass(frozen=True)
class NovelMetadata:
    slug: str
    title: str
    author: str = ""
    genres: List[str] = field(default_factory=list)
    description: str = ""
    cover_url: str = ""


@dataclass(frozen=True)
class NovelManifest:
    """Novel details plus the ordered chapter list."""

    slug: str
    title: str
    author: str = ""
    genres: List[str] = field(default_factory=list)
    description: str = ""
    cover_url: str = ""
    chapters: List[ChapterRef] = field(default_factory=list)

    @property
    def metadata(self) -> NovelMetadata:
        return NovelMetadata(
            slug=self.slug,
            title=self.title,
            author=self.author,
            genres=list(self.genres),
            description=self.description,
            cover_url=self.cover_url,
        )


@dataclass
class Fragment:
    """One chapter slot. ``body`` stays None until the chapter resolves."""

    index: int
    title: str
    body: Optional[str] = None

    @property
    def resolved(self) -> bool:
        return self.body is not None


class JobOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class JobResult:
    id: str
    outcome: JobOutcome
    title: str = ""
    total_fragments: int = 0
    failed_fragments: int = 0
    error: Optional[str] = None
    output_path: Optional[Path] = None

    @classmethod
    def success(cls, id: str, title: str, total: int, failed: int,
                output_path: Optional[Path] = None) -> "JobResult":
        return cls(id=id, outcome=JobOutcome.SUCCESS, title=title,
                   total_fragments=total, failed_fragments=failed, output_path=output_path)

    @classmethod
    def failure(cls, id: str, error: str, title: str = "") -> "JobResult":
        return cls(id=id, outcome=JobOutcome.FAILURE, title=title, error=error)

    @classmethod
    def skipped(cls, id: str, error: str, title: str = "", total: int = 0) -> "JobResult":
        return cls(id=id, outcome=JobOutcome.SKIPPED, title=title, error=error, total_fragments=total)

    def to_message(self) -> Dict[str, Any]:
        """Render the worker -> coordinator ``result`` message."""
        return {
            "type": "result",
            "id": self.id,
            "title": self.title,
            "success": self.outcome is JobOutcome.SUCCESS,
            "skipped": self.outcome is JobOutcome.SKIPPED,
            "error": self.error,
            "total_fragments": self.total_fragments,
            "failed_fragments": self.failed_fragments,
        }


class WorkerPhase(str, Enum):
    STARTING = "starting"
    READY = "ready"
    BUSY = "busy"
    IDLE = "idle"
    CRASHED = "crashed"


@dataclass
class PoolStats:
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    in_flight: int = 0

    @property
    def completed(self) -> int:
        return self.succeeded + self.failed + self.skipped

    def snapshot(self) -> Dict[str, int]:
        return {
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "in_flight": self.in_flight,
        }
