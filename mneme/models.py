"""Value types shared across the pipeline."""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class RelationType(Enum):
    RELATED_TO = "related_to"
    CAUSED_BY = "caused_by"
    FOLLOWED_BY = "followed_by"
    SUPPORTS = "supports"
    CONTRADICTS = "contradicts"
    REVISITS = "revisits"
    AUTO_LINKED = "auto_linked"


@dataclass
class Note:
    """A user-authored memory. The core only ever reads these."""
    id: str
    owner_id: str
    title: str
    body: str
    importance: int = 5  # 1-10
    archived: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def text(self) -> str:
        return f"{self.title} {self.body}"


@dataclass
class Edge:
    """Directed, typed, weighted link. Expansion treats it as undirected."""
    id: str
    source_id: str
    target_id: str
    relation_type: RelationType = RelationType.RELATED_TO
    strength: float = 1.0
    created_at: Optional[datetime] = None

    def other_end(self, note_id: str) -> str:
        return self.target_id if self.source_id == note_id else self.source_id


@dataclass
class ScoredNote:
    note: Note
    score: float


@dataclass
class SourceReference:
    note_id: str
    title: str
    score: float


@dataclass
class AnswerResult:
    question: str
    answer: str
    confidence: float
    sources: list[SourceReference] = field(default_factory=list)
    related_note_ids: list[str] = field(default_factory=list)
    cached: bool = False

    def to_dict(self) -> dict:
        return asdict(self)
