"""
Data browser endpoints for viewing mirrored GitHub data.

Collections are the public names of the mirrored kinds (``organizations``,
``pull-requests``, ``issue-changelogs``, ...). Documents are the raw API
objects plus ``userId`` and their scope fields (``orgLogin``, ``repoName``,
``issueNumber``); filter and sort fields are dotted paths into them.
"""
import logging
import math
from typing import Any, Literal, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from connectors.models import EntityKind
from connectors.persistence import RecordStore

router = APIRouter()
logger = logging.getLogger(__name__)

record_store = RecordStore()

MAX_PAGE_SIZE: int = 500
SEARCH_SAMPLE_SIZE: int = 5


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CollectionsResponse(BaseModel):
    collections: list[str]


class QueryRequest(CamelModel):
    page: int = Field(1, ge=1)
    page_size: int = Field(100, ge=1, le=MAX_PAGE_SIZE)
    sort_field: Optional[str] = None
    sort_order: Literal["asc", "desc"] = "asc"
    # field -> plain value (contains) or {"type": ..., "value": ...}
    filters: dict[str, Any] = Field(default_factory=dict)
    search_term: str = ""
    user_id: Optional[str] = None


class FieldInfo(BaseModel):
    field: str
    type: str


class QueryResponse(CamelModel):
    data: list[dict[str, Any]]
    total_count: int
    page: int
    page_size: int
    total_pages: int
    fields: list[FieldInfo]


class SearchRequest(CamelModel):
    search_term: str = ""
    collections: list[str] = Field(default_factory=list)
    user_id: Optional[str] = None


class SearchResult(BaseModel):
    collection: str
    count: int
    samples: list[dict[str, Any]]


class SearchResponse(BaseModel):
    results: list[SearchResult]


def _field_type(value: Any) -> str:
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return "string"


def extract_fields(document: dict[str, Any]) -> list[FieldInfo]:
    """Top-level fields of a document with a coarse type for column rendering."""
    return [
        FieldInfo(field=key, type=_field_type(value))
        for key, value in document.items()
        if key != "_id"
    ]


def _resolve_kind(collection: str) -> EntityKind:
    try:
        return EntityKind.from_collection(collection)
    except ValueError:
        raise HTTPException(status_code=404, detail="Collection not found")


@router.get("/collections", response_model=CollectionsResponse)
async def get_collections() -> CollectionsResponse:
    return CollectionsResponse(collections=[kind.value for kind in EntityKind])


@router.post("/query/{collection}", response_model=QueryResponse)
async def query_collection(collection: str, request: QueryRequest) -> QueryResponse:
    """Page through one collection with optional filters, sort and free-text search."""
    kind = _resolve_kind(collection)

    try:
        documents, total = await record_store.query(
            kind,
            user_id=request.user_id,
            page=request.page,
            page_size=request.page_size,
            sort_field=request.sort_field,
            sort_order=request.sort_order,
            filters=request.filters,
            search_term=request.search_term,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return QueryResponse(
        data=documents,
        total_count=total,
        page=request.page,
        page_size=request.page_size,
        total_pages=math.ceil(total / request.page_size),
        fields=extract_fields(documents[0]) if documents else [],
    )


@router.post("/search", response_model=SearchResponse)
async def global_search(request: SearchRequest) -> SearchResponse:
    """Match counts plus a few samples per collection. Collections with no hits are omitted."""
    if not request.search_term:
        return SearchResponse(results=[])

    kinds: list[EntityKind] = []
    for name in request.collections or [kind.value for kind in EntityKind]:
        try:
            kinds.append(EntityKind.from_collection(name))
        except ValueError:
            logger.debug("Skipping unknown collection %s in search", name)

    results: list[SearchResult] = []
    for kind in kinds:
        count, samples = await record_store.search(
            kind,
            request.search_term,
            user_id=request.user_id,
            sample_size=SEARCH_SAMPLE_SIZE,
        )
        if count > 0:
            results.append(SearchResult(collection=kind.value, count=count, samples=samples))

    return SearchResponse(results=results)
