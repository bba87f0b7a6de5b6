"""Pydantic request/response models for the bylawqa API.

These are the API contract — decoupled from the internal domain dataclasses.
We bridge them using dataclasses.asdict() in the route handlers.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from bylawqa.core.types import FeedbackType


class SearchFiltersRequest(BaseModel):
    bylaw_number: str | list[str] | None = None
    category: str | list[str] | None = None
    section: str | list[str] | None = None
    title: str | None = None
    is_consolidated: bool | None = None
    date_from: str | None = None
    date_to: str | None = None


class SearchRequest(BaseModel):
    """Request body for POST /api/v1/bylaws/search."""

    query: str = Field(
        ...,
        min_length=1,
        max_length=500,
        examples=["What does Bylaw No. 4742 say about tree removal?"],
    )
    limit: int = Field(5, ge=1, le=20)
    min_score: float = Field(0.6, ge=0.0, le=1.0)
    filters: SearchFiltersRequest | None = None
    use_cache: bool = True


class ChunkMetadataResponse(BaseModel):
    bylaw_number: str
    title: str
    section: str
    category: str = "general"
    date_enacted: str = ""
    last_updated: str = ""
    section_title: str | None = None
    is_consolidated: bool | None = None
    consolidated_date: str | None = None
    chunk_index: int = 0


class ChunkResponse(BaseModel):
    id: str
    text: str
    metadata: ChunkMetadataResponse
    score: float


class VerifiedResultResponse(BaseModel):
    id: str
    bylaw_number: str
    title: str
    section: str
    section_title: str | None = None
    content: str
    score: float
    is_verified: bool
    pdf_path: str
    official_url: str
    category: str = "general"
    is_consolidated: bool = False
    consolidated_date: str | None = None
    enactment_date: str | None = None
    amended_bylaw: list[str] = []


class SearchResponse(BaseModel):
    query: str
    results: list[VerifiedResultResponse]


class FeedbackRequest(BaseModel):
    """Request body for POST /api/v1/bylaws/feedback."""

    bylaw_number: str = Field(..., min_length=1, max_length=20)
    section: str = Field(..., min_length=1, max_length=200)
    feedback: FeedbackType
    comment: str | None = Field(None, max_length=2000)


class FeedbackResponse(BaseModel):
    bylaw_number: str
    section: str
    feedback: FeedbackType
    user_comment: str | None = None
    timestamp: datetime | None = None


class ToolRequest(BaseModel):
    query: str = Field(..., min_length=1, max_length=500)
    category: str | None = None
    bylaw_number: str | None = None


class ToolCitationResponse(BaseModel):
    bylaw_number: str
    title: str
    section: str
    content: str
    section_title: str | None = None
    url: str | None = None
    is_consolidated: bool | None = None
    consolidated_date: str | None = None


class ToolResponse(BaseModel):
    found: bool
    message: str | None = None
    results: list[ToolCitationResponse] | None = None


class ErrorResponse(BaseModel):
    detail: str


class PdfLocationResponse(BaseModel):
    found: bool
    url: str | None = None
    message: str | None = None
