"""Domain types for the bylawqa retrieval pipeline.

All shared dataclasses and type definitions live here to prevent
circular imports and establish a single source of truth for the
domain model. Every other module imports from here.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

# Fixed category taxonomy for indexed chunks
CATEGORIES = ("zoning", "trees", "animals", "noise", "building", "traffic", "general")
DEFAULT_CATEGORY = "general"

# Filters may carry a scalar (exact match) or a list of values (IN match)
FilterValue = str | bool | list[str] | tuple[str, ...]
Filters = dict[str, FilterValue]


# ---------------------------------------------------------------------------
# Chunk types
# ---------------------------------------------------------------------------

@dataclass
class ChunkMetadata:
    """Metadata attached to each indexed chunk for filtering and citation."""

    bylaw_number: str
    title: str
    section: str
    category: str = DEFAULT_CATEGORY
    date_enacted: str = ""
    last_updated: str = ""
    section_title: str | None = None
    is_consolidated: bool | None = None
    consolidated_date: str | None = None
    chunk_index: int = 0


@dataclass
class BylawChunk:
    """A unit of indexed bylaw text, produced by the external chunking step."""

    text: str
    metadata: ChunkMetadata


# ---------------------------------------------------------------------------
# Vector store types
# ---------------------------------------------------------------------------

@dataclass
class VectorRecord:
    """A chunk plus its embedding, ready for upsert."""

    id: str
    text: str
    metadata: ChunkMetadata
    embedding: list[float]


@dataclass
class VectorMatch:
    """One match returned by the vector store."""

    id: str
    score: float
    text: str
    metadata: ChunkMetadata


# ---------------------------------------------------------------------------
# Search types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SearchOptions:
    """Per-call knobs for hybrid search."""

    limit: int = 5
    min_score: float = 0.6
    filters: Filters | None = None
    use_cache: bool = True
    exclude_bylaws: tuple[str, ...] = ()


@dataclass
class SearchResult:
    """A single ranked hit from hybrid search or one of its fallback tiers."""

    id: str
    text: str
    metadata: ChunkMetadata
    score: float
    keyword_score: float | None = None


@dataclass
class CacheEntry:
    results: list[SearchResult]
    timestamp: float
    source: str = "vector"


# ---------------------------------------------------------------------------
# Verification types
# ---------------------------------------------------------------------------

class FeedbackType(str, Enum):
    ACCURATE = "accurate"
    INACCURATE = "inaccurate"
    INCOMPLETE = "incomplete"
    OUTDATED = "outdated"


@dataclass
class BylawSectionData:
    """An officially known section of a verified bylaw."""

    section_number: str
    content: str
    title: str | None = None


@dataclass
class VerifiedBylawData:
    """Authoritative record of a bylaw, as held by the verification store."""

    bylaw_number: str
    title: str
    pdf_path: str
    official_url: str
    is_consolidated: bool = False
    last_verified: datetime | None = None
    consolidated_date: str | None = None
    enactment_date: str | None = None
    amendments: list[str] = field(default_factory=list)
    sections: list[BylawSectionData] = field(default_factory=list)

    def find_section(self, section: str) -> BylawSectionData | None:
        wanted = section.strip().lower()
        for sec in self.sections:
            if sec.section_number.strip().lower() == wanted:
                return sec
        return None


@dataclass
class CitationFeedbackEntry:
    bylaw_number: str
    section: str
    feedback: FeedbackType
    user_comment: str | None = None
    timestamp: datetime | None = None


@dataclass
class VerifiedSearchResult:
    """A search hit annotated by the verification layer."""

    id: str
    bylaw_number: str
    title: str
    section: str
    content: str
    score: float
    is_verified: bool
    pdf_path: str
    official_url: str
    section_title: str | None = None
    category: str = DEFAULT_CATEGORY
    is_consolidated: bool = False
    consolidated_date: str | None = None
    enactment_date: str | None = None
    amended_bylaw: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Tool-facing result shape
# ---------------------------------------------------------------------------

@dataclass
class BylawToolCitation:
    bylaw_number: str
    title: str
    section: str
    content: str
    section_title: str | None = None
    url: str | None = None
    is_consolidated: bool | None = None
    consolidated_date: str | None = None


@dataclass
class BylawToolResult:
    """Result shape handed to the agent tool-calling layer."""

    found: bool
    message: str | None = None
    results: list[BylawToolCitation] | None = None
