"""Domain models for the trawler database layer.

Source metadata is stored as a JSON string. ``Source.details`` decodes it
into the typed variant for the source's type; every variant shares the
``SourceMetadata`` envelope (error / training / progress fields).
"""

from __future__ import annotations

import dataclasses
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar

from trawler.errors import PolicyError


class SourceType(str, Enum):
    WEBSITE = "website"
    FILE = "file"
    TEXT = "text"
    QA = "qa"


class SourceStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    READY = "ready"
    ERROR = "error"
    CRITICAL = "critical"  # chunks deleted, replacements lost; needs an operator
    REMOVED = "removed"


# ---------------------------------------------------------------------------
# Crawl policy
# ---------------------------------------------------------------------------


@dataclass
class CrawlPolicy:
    """How far a website crawl may go.

    Attributes:
        max_pages: Page budget, clamped to the system ceiling before use.
        crawl_subpages: Follow same-domain links from each page.
        include_paths: fnmatch globs; when set, a discovered URL path must match one.
        exclude_paths: fnmatch globs; a matching URL path is never queued.
        full_page_content: Extract the whole ``<body>`` instead of the main region.
    """

    max_pages: int = 200
    crawl_subpages: bool = True
    include_paths: list[str] = field(default_factory=list)
    exclude_paths: list[str] = field(default_factory=list)
    full_page_content: bool = False

    def validate(self) -> CrawlPolicy:
        if self.max_pages < 1:
            raise PolicyError(f"max_pages must be >= 1, got {self.max_pages}")
        return self

    def clamped(self, ceiling: int) -> CrawlPolicy:
        """Return a validated copy with ``max_pages`` capped at *ceiling*."""
        self.validate()
        return dataclasses.replace(self, max_pages=min(self.max_pages, ceiling))

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> CrawlPolicy:
        data = data or {}
        return cls(
            max_pages=int(data.get("max_pages") or cls.max_pages),
            crawl_subpages=bool(data.get("crawl_subpages", True)),
            include_paths=list(data.get("include_paths") or []),
            exclude_paths=list(data.get("exclude_paths") or []),
            full_page_content=bool(data.get("full_page_content", False)),
        )


# ---------------------------------------------------------------------------
# Source metadata variants
# ---------------------------------------------------------------------------


@dataclass
class SourceMetadata:
    """Envelope fields shared by every source type.

    Keys this class does not know about are kept in ``extra`` and written
    back unchanged, so older or hand-edited metadata survives a round trip.
    """

    kind: ClassVar[str] = ""

    error: str | None = None
    critical_error: bool = False
    is_trained: bool = False
    embedding_model: str | None = None
    total_embedding_tokens: int = 0
    embedding_cost_usd: float = 0.0
    progress: dict[str, Any] | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.kind}
        data.update(self.extra)
        for f in dataclasses.fields(self):
            if f.name == "extra":
                continue
            value = getattr(self, f.name)
            data[f.name] = value.to_dict() if isinstance(value, CrawlPolicy) else value
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SourceMetadata:
        known = {f.name for f in dataclasses.fields(cls)} - {"extra"}
        kwargs: dict[str, Any] = {}
        extra: dict[str, Any] = {}
        for key, value in data.items():
            if key == "type":
                continue
            if key in known:
                kwargs[key] = value
            else:
                extra[key] = value
        return cls(**kwargs, extra=extra)


@dataclass
class WebsiteMetadata(SourceMetadata):
    kind: ClassVar[str] = SourceType.WEBSITE.value

    url: str = ""
    policy: CrawlPolicy = field(default_factory=CrawlPolicy)
    pages_crawled: int = 0
    crawled_urls: list[str] = field(default_factory=list)
    discovered_links: int = 0
    crawl_errors: list[dict[str, str]] = field(default_factory=list)
    last_crawled_at: str | None = None
    recrawl_started_at: str | None = None
    previous_chunks_count: int | None = None
    last_recrawl_error: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WebsiteMetadata:
        data = dict(data)
        policy = CrawlPolicy.from_dict(data.pop("policy", None))
        meta = super().from_dict(data)
        meta.policy = policy
        return meta


@dataclass
class FileMetadata(SourceMetadata):
    kind: ClassVar[str] = SourceType.FILE.value

    filename: str = ""
    extension: str = ""
    file_size: int = 0


@dataclass
class TextMetadata(SourceMetadata):
    kind: ClassVar[str] = SourceType.TEXT.value

    title: str = ""


@dataclass
class QaMetadata(SourceMetadata):
    kind: ClassVar[str] = SourceType.QA.value

    title: str = ""
    questions: list[str] = field(default_factory=list)
    answer: str = ""


_METADATA_TYPES: dict[str, type[SourceMetadata]] = {
    cls.kind: cls for cls in (WebsiteMetadata, FileMetadata, TextMetadata, QaMetadata)
}


def metadata_from_dict(source_type: str, data: dict[str, Any]) -> SourceMetadata:
    """Decode *data* into the metadata variant registered for *source_type*."""
    try:
        cls = _METADATA_TYPES[str(SourceType(source_type).value)]
    except ValueError as exc:
        raise ValueError(f"Unknown source type '{source_type}'") from exc
    return cls.from_dict(data)


# ---------------------------------------------------------------------------
# Rows
# ---------------------------------------------------------------------------


@dataclass
class Source:
    id: str
    agent_id: str
    type: str
    name: str = ""
    status: str = SourceStatus.PENDING.value
    metadata: str = field(default_factory=lambda: "{}")
    size: int = 0
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def metadata_dict(self) -> dict:
        return json.loads(self.metadata)

    @property
    def details(self) -> SourceMetadata:
        """Typed view of ``metadata`` for this source's type."""
        return metadata_from_dict(self.type, self.metadata_dict)


@dataclass
class Chunk:
    source_id: str
    position: int
    content: str
    agent_id: str = ""
    metadata: str = field(default_factory=lambda: "{}")
    embedding: list[float] | None = None
    embedding_model: str | None = None
    created_at: str | None = None
    id: int | None = None  # set after insert; None for unsaved chunks

    @property
    def metadata_dict(self) -> dict:
        return json.loads(self.metadata)
