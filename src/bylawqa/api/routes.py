"""API route handlers for bylaw search.

POST /api/v1/bylaws/search — verified citations for a question
GET  /api/v1/bylaws/chunks/{chunk_id} — one indexed chunk by id
POST /api/v1/bylaws/feedback — record feedback on a citation
POST /api/v1/bylaws/tool — tool-calling result shape
GET  /api/v1/bylaws/pdf/{bylaw_number} — public path of the bylaw's PDF
"""

import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, Request

from bylawqa.api.ratelimit import limit_search
from bylawqa.api.schemas import (
    ChunkResponse,
    ErrorResponse,
    FeedbackRequest,
    FeedbackResponse,
    PdfLocationResponse,
    SearchRequest,
    SearchResponse,
    ToolRequest,
    ToolResponse,
)
from bylawqa.core.errors import ConfigurationError
from bylawqa.core.types import SearchOptions
from bylawqa.ingestion.pdf import find_pdf
from bylawqa.pipeline.service import BylawSearchService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/bylaws", tags=["bylaws"])


def get_service(request: Request) -> BylawSearchService:
    return request.app.state.service


@router.post(
    "/search",
    response_model=SearchResponse,
    responses={
        429: {"model": ErrorResponse, "description": "Too many searches from this client"},
        503: {"model": ErrorResponse, "description": "Search backend misconfigured"},
    },
    dependencies=[Depends(limit_search)],
)
async def search(body: SearchRequest, service: BylawSearchService = Depends(get_service)):
    filters = body.filters.model_dump(exclude_none=True) if body.filters else None
    options = SearchOptions(
        limit=body.limit,
        min_score=body.min_score,
        filters=filters or None,
        use_cache=body.use_cache,
    )
    try:
        results = await service.search(body.query, options)
    except ConfigurationError as e:
        logger.error("Search misconfigured: %s", e.message)
        raise HTTPException(status_code=503, detail=e.message)
    return SearchResponse(query=body.query, results=[asdict(r) for r in results])


@router.get(
    "/chunks/{chunk_id}",
    response_model=ChunkResponse,
    responses={404: {"model": ErrorResponse, "description": "Chunk not found"}},
)
async def get_chunk(chunk_id: str, service: BylawSearchService = Depends(get_service)):
    result = await service.get_bylaw_by_id(chunk_id)
    if result is None:
        raise HTTPException(status_code=404, detail=f"Chunk not found: {chunk_id}")
    return ChunkResponse(id=result.id, text=result.text, metadata=asdict(result.metadata), score=result.score)


@router.post("/feedback", response_model=FeedbackResponse, status_code=201)
async def feedback(body: FeedbackRequest, service: BylawSearchService = Depends(get_service)):
    entry = await service.record_feedback(body.bylaw_number, body.section, body.feedback, body.comment)
    return FeedbackResponse(**asdict(entry))


@router.post("/tool", response_model=ToolResponse)
async def tool(body: ToolRequest, service: BylawSearchService = Depends(get_service)):
    try:
        result = await service.tool_search(body.query, category=body.category, bylaw_number=body.bylaw_number)
    except ConfigurationError as e:
        raise HTTPException(status_code=503, detail=e.message)
    return ToolResponse(**asdict(result))


@router.get(
    "/pdf/{bylaw_number}",
    response_model=PdfLocationResponse,
    responses={503: {"model": ErrorResponse, "description": "PDF directory unavailable"}},
)
async def find_bylaw_pdf(bylaw_number: str, service: BylawSearchService = Depends(get_service)):
    try:
        found = find_pdf(service.settings.pdf_dir, bylaw_number)
    except FileNotFoundError as e:
        logger.error("PDF lookup failed: %s", e)
        raise HTTPException(status_code=503, detail="PDF directory unavailable")
    if found is None:
        return PdfLocationResponse(found=False, message=f"No PDF found for bylaw number: {bylaw_number}")
    return PdfLocationResponse(found=True, url=f"/pdfs/{found.filename}")
