"""Data models shared by the indexer, the resolver and the API.

Records that cross the API boundary are pydantic models serialised with
camelCase aliases. Chunks and scored candidates stay plain dataclasses since
they carry numpy vectors and never leave the process.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

import numpy as np
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

REVIEWED_ANSWER_SOURCE = "Reviewed Answer"


def utcnow() -> datetime:
    """Timezone-aware current time; all stored timestamps are UTC."""
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class Page(CamelModel):
    """One crawled url. Owned by the indexer."""
    url: str
    title: str = ""
    content_hash: str
    updated_at: datetime


class Feedback(CamelModel):
    correct: bool
    comment: str = ""
    ts: datetime = Field(default_factory=utcnow)


class Turn(CamelModel):
    """A single entry in a session's append-only history."""
    mid: str
    role: Role
    content: str
    sources: List[str] = Field(default_factory=list)
    ts: datetime = Field(default_factory=utcnow)
    feedback: Optional[Feedback] = None
    meta: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, use_enum_values=True)


class Session(CamelModel):
    sid: str
    created_at: datetime
    updated_at: datetime
    history: List[Turn] = Field(default_factory=list)


class SessionSummary(CamelModel):
    """Row of the admin session listing."""
    sid: str
    created_at: datetime
    updated_at: datetime
    count: int = 0
    correct: int = 0
    incorrect: int = 0


class SessionPage(CamelModel):
    total: int
    limit: int
    skip: int
    rows: List[SessionSummary] = Field(default_factory=list)


class Override(CamelModel):
    """A human-reviewed question -> answer pin."""
    id: Optional[int] = None
    question: str
    norm_question: str
    answer: str
    question_embedding: Optional[List[float]] = Field(default=None, exclude=True)
    force: bool = False
    reviewer: str = ""
    sid: Optional[str] = None
    assistant_mid: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def has_embedding(self) -> bool:
        return bool(self.question_embedding)


@dataclass
class ChunkRecord:
    """A stored chunk as read back from the document store."""
    id: int
    url: str
    index: int
    text: str
    embedding: Optional[np.ndarray] = None


@dataclass
class ScoredChunk:
    chunk: ChunkRecord
    score: float

    @property
    def url(self) -> str:
        return self.chunk.url

    @property
    def text(self) -> str:
        return self.chunk.text


@dataclass
class OverrideMatch:
    override: Override
    similarity: float
    exact: bool = False

    @property
    def is_forced(self) -> bool:
        return self.override.force and bool(self.override.answer.strip())


@dataclass
class QueryTrace:
    """What the resolver did for one question. Logged and returned to callers."""
    stages: List[str] = field(default_factory=list)
    expanded_query: str = ""
    normalized_query: str = ""
    warnings: List[str] = field(default_factory=list)
    top_score: Optional[float] = None
    escalation: Optional[str] = None
    decision: Optional[str] = None
    candidate_count: int = 0
    override_candidate_id: Optional[int] = None


@dataclass
class AskResult:
    sid: str
    answer: str
    sources: List[str]
    mid: Optional[str]
    trace: QueryTrace = field(default_factory=QueryTrace)
