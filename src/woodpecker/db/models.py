"""Domain models for the Woodpecker database layer."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum

from woodpecker.errors import InvalidTransitionError


class SourceType(str, Enum):
    PDF = "pdf"
    DOCX = "docx"
    TXT = "txt"
    CSV = "csv"
    XLSX = "xlsx"
    PPTX = "pptx"
    EPUB = "epub"
    WEB = "web"
    LINK = "link"


class SourceStatus(str, Enum):
    """Processing lifecycle of a knowledge source.

    ``ready`` and ``error`` are terminal: the only way out is an explicit
    re-ingestion request (``Repository.reset_for_reingestion``), which resets
    the record back to ``pending`` in a single write.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    READY = "ready"
    ERROR = "error"

    def can_transition_to(self, target: SourceStatus) -> bool:
        return target in _SOURCE_TRANSITIONS[self]

    def check_transition(self, target: SourceStatus) -> None:
        if not self.can_transition_to(target):
            raise InvalidTransitionError(
                f"Source status cannot change from '{self.value}' to '{target.value}'"
            )

    @classmethod
    def sources_of(cls, target: SourceStatus) -> tuple[SourceStatus, ...]:
        """Return every status from which *target* may be reached."""
        return tuple(s for s in cls if target in _SOURCE_TRANSITIONS[s])


_SOURCE_TRANSITIONS: dict[SourceStatus, frozenset[SourceStatus]] = {
    SourceStatus.PENDING: frozenset({SourceStatus.PROCESSING, SourceStatus.ERROR}),
    SourceStatus.PROCESSING: frozenset({SourceStatus.READY, SourceStatus.ERROR}),
    SourceStatus.READY: frozenset(),
    SourceStatus.ERROR: frozenset(),
}


class WorkspaceMode(str, Enum):
    STUDY = "study"
    EXAM = "exam"
    RETRIEVAL = "retrieval"
    INSTITUTIONAL = "institutional"

    @classmethod
    def parse(cls, value: str | WorkspaceMode | None) -> WorkspaceMode:
        """Return the matching mode; unknown or empty values fall back to STUDY."""
        if isinstance(value, WorkspaceMode):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.STUDY


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class KnowledgeSource:
    id: str
    name: str
    source_type: SourceType
    status: SourceStatus = SourceStatus.PENDING
    owner_id: str = ""
    file_path: str | None = None      # object store key
    original_url: str | None = None   # web sources
    mime_type: str | None = None
    file_size: int = 0
    chunk_count: int = 0
    chunk_generation: int = 0
    error_message: str | None = None
    last_processed_at: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class DocumentChunk:
    source_id: str
    chunk_index: int
    content: str
    token_count: int = 0
    metadata: str = field(default_factory=lambda: "{}")
    generation: int = 0
    created_at: str | None = None
    id: int | None = None  # rowid; None for unsaved chunks

    @property
    def metadata_dict(self) -> dict:
        return json.loads(self.metadata)


@dataclass
class Workspace:
    id: str
    name: str
    mode: WorkspaceMode = WorkspaceMode.STUDY
    color: str = "#6366f1"
    description: str | None = None
    settings: dict = field(default_factory=dict)
    created_at: str | None = None


@dataclass
class WorkspaceSource:
    workspace_id: str
    source_id: str
    enabled: bool = True
    added_at: str | None = None


@dataclass
class Conversation:
    id: str
    workspace_id: str
    title: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class Citation:
    title: str
    excerpt: str = "Referenced in the response"
    page: int | None = None

    def to_dict(self) -> dict:
        data = {"title": self.title, "excerpt": self.excerpt}
        if self.page is not None:
            data["page"] = self.page
        return data

    @classmethod
    def from_dict(cls, data: dict) -> Citation:
        page = data.get("page")
        return cls(
            title=str(data.get("title", "")),
            excerpt=str(data.get("excerpt", "")),
            page=int(page) if page is not None else None,
        )


@dataclass
class Message:
    id: str
    conversation_id: str
    role: MessageRole
    content: str
    citations: list[Citation] = field(default_factory=list)
    created_at: str | None = None


@dataclass
class SearchHit:
    """One row of the ranked search procedure, best-first."""

    id: int
    source_id: str
    source_name: str
    chunk_index: int
    content: str
    rank: float
