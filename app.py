"""
HiNATA FastAPI Application

A REST API server over the HiNATA stores: capture packets, knowledge
blocks, relations and tags. The API performs no authorization; callers
are expected to authenticate in front of it.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Literal

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from hinata.config import Config
from hinata.models import (
    BatchOperation,
    PacketSearchQuery,
    ReferenceType,
    RelationMetadata,
    RelationQuery,
    RelationType,
    SearchQuery,
    TagCategory,
    TagQuery,
    TagType,
    TimeRange,
)
from hinata.services.engine import HiNATAEngine
from hinata.utils.exceptions import (
    ConsistencyError,
    DuplicateError,
    HiNATAError,
    NotFoundError,
    ValidationError,
)
from hinata.utils.logger import get_logger, setup_logging

# Global engine instance
engine: HiNATAEngine | None = None
logger = get_logger(__name__)

ERROR_STATUS: dict[type[HiNATAError], int] = {
    ValidationError: 422,
    NotFoundError: 404,
    DuplicateError: 409,
    ConsistencyError: 409,
}


# Pydantic models for API
class ReferenceRequest(BaseModel):
    """Request model for adding a block reference."""

    target_block_id: str
    reference_type: ReferenceType = ReferenceType.STRONG
    source_note_item_id: str | None = None
    context: str | None = None


class ReorderRequest(BaseModel):
    """Request model for reordering note items."""

    ordered_ids: list[str]


class CreateRelationRequest(BaseModel):
    """Request model for creating a relation."""

    source_id: str
    target_id: str
    type: RelationType
    strength: float | None = Field(default=None, description="Weight in [0, 1]")
    bidirectional: bool = False
    metadata: RelationMetadata | None = None


class StrengthRequest(BaseModel):
    """Request model for updating relation strength."""

    strength: float


class GraphRequest(BaseModel):
    """Request model for a graph walk."""

    center_ids: list[str] = Field(..., min_length=1)
    max_depth: int = Field(default=2, ge=0)
    min_strength: float = Field(default=0.1, ge=0.0, le=1.0)


class CreateTagRequest(BaseModel):
    """Request model for creating a tag."""

    name: str
    type: TagType = TagType.USER
    category: TagCategory = TagCategory.OTHER
    description: str | None = None
    color: str | None = None
    icon: str | None = None
    parent_id: str | None = None
    synonyms: list[str] = Field(default_factory=list)
    related_tags: list[str] = Field(default_factory=list)


class UseTagRequest(BaseModel):
    """Request model for applying a tag to an item."""

    item_id: str
    method: Literal["manual", "auto", "suggested"] = "manual"
    context: str | None = None


class RecommendTagsRequest(BaseModel):
    """Request model for tag recommendations."""

    item_id: str
    content: str
    existing_tags: list[str] = Field(default_factory=list)
    limit: int | None = Field(default=None, ge=1)
    min_confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    content_based: bool = True
    history_based: bool = True
    similarity_based: bool = True


class ExtractTagsRequest(BaseModel):
    """Request model for keyword extraction."""

    content: str
    max_tags: int = Field(default=5, ge=1)
    min_confidence: float = Field(default=0.5, ge=0.0, le=1.0)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    engine_initialized: bool
    packets: int
    blocks: int
    relations: int
    tags: int


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown."""
    global engine

    config = Config.from_env()

    setup_logging(config.logging)

    logger.info("Starting HiNATA server")
    engine = HiNATAEngine(config)
    await engine.initialize()

    yield

    logger.info("Shutting down HiNATA server")
    await engine.close()
    engine = None
    logger.info("Cleanup complete")


# Create FastAPI app
app = FastAPI(
    title="HiNATA API",
    description="Knowledge-capture storage: packets, knowledge blocks, relations and tags",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=Config.from_env().api.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(HiNATAError)
async def hinata_error_handler(request: Request, exc: HiNATAError):
    """Translate store errors into HTTP responses."""
    status = next(
        (code for error_type, code in ERROR_STATUS.items() if isinstance(exc, error_type)), 500
    )
    logger.warning(
        "[API] {} on {}: {}",
        exc.code,
        request.url.path,
        exc.message,
        extra={"code": exc.code, "path": request.url.path},
    )
    return JSONResponse(status_code=status, content=exc.to_dict())


def get_engine() -> HiNATAEngine:
    """Return the running engine or fail with 503."""
    if not engine:
        raise HTTPException(status_code=503, detail="Engine not initialized")
    return engine


# Health check endpoint
@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    if not engine:
        return HealthResponse(
            status="initializing",
            engine_initialized=False,
            packets=0,
            blocks=0,
            relations=0,
            tags=0,
        )
    return HealthResponse(
        status="healthy",
        engine_initialized=engine.initialized,
        packets=len(engine.packets),
        blocks=len(engine.blocks),
        relations=len(engine.relations),
        tags=len(engine.tags),
    )


@app.get("/stats")
async def get_stats(user_id: str | None = Query(default=None)):
    """Statistics of every store."""
    return await get_engine().get_statistics(user_id)


# Packet endpoints
@app.post("/packets", status_code=201)
async def store_packet(packet: dict[str, Any]):
    """Validate and store a capture packet."""
    return await get_engine().packets.store(packet)


@app.post("/packets/search")
async def search_packets(query: PacketSearchQuery):
    """Search packets with filters, sort, pagination and aggregations."""
    return await get_engine().packets.search(query)


@app.post("/packets/batch")
async def batch_packets(operations: list[BatchOperation]):
    """Apply packet create/update/delete operations best-effort."""
    return await get_engine().packets.batch(operations)


@app.get("/packets/{packet_id}")
async def get_packet(packet_id: str):
    """Get a packet by id."""
    packet = await get_engine().packets.get_by_id(packet_id)
    if packet is None:
        raise HTTPException(status_code=404, detail="Packet not found")
    return packet


@app.patch("/packets/{packet_id}")
async def update_packet(packet_id: str, updates: dict[str, Any]):
    """Merge a partial update into a packet."""
    return await get_engine().packets.update(packet_id, updates)


@app.delete("/packets/{packet_id}", status_code=204)
async def delete_packet(packet_id: str):
    """Delete a packet."""
    await get_engine().packets.delete(packet_id)


@app.get("/packets/{packet_id}/similar")
async def similar_packets(
    packet_id: str,
    threshold: float | None = Query(default=None, ge=0.0, le=1.0),
    limit: int | None = Query(default=None, ge=1),
):
    """Packets lexically similar to a packet."""
    return await get_engine().packets.get_similar_packets(packet_id, threshold, limit)


@app.get("/users/{user_id}/packets")
async def user_packets(
    user_id: str,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
):
    """A user's packets, newest first."""
    return await get_engine().packets.get_by_user(user_id, limit, offset)


@app.get("/users/{user_id}/attention-trend")
async def attention_trend(
    user_id: str,
    start: datetime,
    end: datetime,
    granularity: Literal["hour", "day", "week", "month"] = "day",
):
    """Attention score per time bucket for a user."""
    return await get_engine().packets.get_attention_trend(
        user_id, TimeRange(start=start, end=end, granularity=granularity)
    )


# Knowledge block endpoints
@app.post("/blocks", status_code=201)
async def create_block(data: dict[str, Any]):
    """Create a knowledge block."""
    return await get_engine().blocks.create(data)


@app.post("/blocks/search")
async def search_blocks(query: SearchQuery):
    """Search knowledge blocks."""
    return await get_engine().blocks.search(query)


@app.post("/blocks/batch")
async def batch_blocks(operations: list[BatchOperation]):
    """Apply block create/update/delete operations best-effort."""
    return await get_engine().blocks.batch(operations)


@app.get("/blocks/{block_id}")
async def get_block(block_id: str):
    """Get a knowledge block by id."""
    block = await get_engine().blocks.get_by_id(block_id)
    if block is None:
        raise HTTPException(status_code=404, detail="Knowledge block not found")
    return block


@app.patch("/blocks/{block_id}")
async def update_block(block_id: str, updates: dict[str, Any]):
    """Update a knowledge block."""
    return await get_engine().blocks.update(block_id, updates)


@app.delete("/blocks/{block_id}", status_code=204)
async def delete_block(block_id: str):
    """Delete a knowledge block with its note items and references."""
    await get_engine().blocks.delete(block_id)


@app.get("/blocks/{block_id}/context")
async def block_context(block_id: str):
    """A block with its tags and relations."""
    return await get_engine().get_block_context(block_id)


@app.post("/blocks/{block_id}/notes", status_code=201)
async def add_note_item(block_id: str, data: dict[str, Any]):
    """Append a note item to a block."""
    return await get_engine().blocks.add_note_item(block_id, data)


@app.put("/blocks/{block_id}/notes/order")
async def reorder_note_items(block_id: str, request: ReorderRequest):
    """Reorder a block's note items."""
    return await get_engine().blocks.reorder_note_items(block_id, request.ordered_ids)


@app.patch("/notes/{note_item_id}")
async def update_note_item(note_item_id: str, updates: dict[str, Any]):
    """Update a note item."""
    return await get_engine().blocks.update_note_item(note_item_id, updates)


@app.delete("/notes/{note_item_id}", status_code=204)
async def remove_note_item(note_item_id: str):
    """Remove a note item."""
    await get_engine().blocks.remove_note_item(note_item_id)


@app.post("/blocks/{block_id}/references", status_code=201)
async def add_reference(block_id: str, request: ReferenceRequest):
    """Reference another block from this one."""
    return await get_engine().blocks.add_reference(
        block_id,
        request.target_block_id,
        request.reference_type,
        source_note_item_id=request.source_note_item_id,
        context=request.context,
    )


@app.get("/blocks/{block_id}/references")
async def get_references(block_id: str):
    """Outgoing references of a block."""
    return await get_engine().blocks.get_references(block_id)


@app.get("/blocks/{block_id}/backlinks")
async def get_backlinks(block_id: str):
    """Incoming references of a block."""
    return await get_engine().blocks.get_backlinks(block_id)


@app.delete("/references/{reference_id}", status_code=204)
async def remove_reference(reference_id: str):
    """Remove a block reference."""
    await get_engine().blocks.remove_reference(reference_id)


# Relation endpoints
@app.post("/relations", status_code=201)
async def create_relation(request: CreateRelationRequest):
    """Create a relation or update the strength of the existing one."""
    relation_id = await get_engine().relations.create_relation(
        request.source_id,
        request.target_id,
        request.type,
        strength=request.strength,
        bidirectional=request.bidirectional,
        metadata=request.metadata,
    )
    return {"id": relation_id}


@app.post("/relations/query")
async def query_relations(query: RelationQuery):
    """Filter, sort and paginate relations."""
    return await get_engine().relations.query_relations(query)


@app.post("/relations/graph")
async def build_graph(request: GraphRequest):
    """Breadth-first relation graph around the given items."""
    return await get_engine().relations.build_graph(
        request.center_ids, request.max_depth, request.min_strength
    )


@app.post("/relations/batch")
async def batch_relations(operations: list[BatchOperation]):
    """Apply relation create/update/delete operations best-effort."""
    return await get_engine().relations.batch(operations)


@app.get("/relations/{relation_id}")
async def get_relation(relation_id: str):
    """Get a relation (records the access)."""
    relation = await get_engine().relations.get_relation(relation_id)
    if relation is None:
        raise HTTPException(status_code=404, detail="Relation not found")
    return relation


@app.patch("/relations/{relation_id}")
async def update_relation_strength(relation_id: str, request: StrengthRequest):
    """Update a relation's strength (clamped to [0, 1])."""
    return await get_engine().relations.update_relation_strength(relation_id, request.strength)


@app.delete("/relations/{relation_id}", status_code=204)
async def delete_relation(relation_id: str):
    """Delete a relation."""
    await get_engine().relations.delete_relation(relation_id)


@app.get("/items/{item_id}/relations")
async def item_relations(item_id: str, include_incoming: bool = True):
    """Relations touching an item."""
    return await get_engine().relations.get_item_relations(item_id, include_incoming)


@app.get("/items/{item_id}/related")
async def related_items(
    item_id: str,
    limit: int = Query(default=10, ge=1),
    min_strength: float = Query(default=0.3, ge=0.0, le=1.0),
    exclude: list[str] = Query(default=[]),
):
    """Recommended related items."""
    return await get_engine().relations.recommend_related(item_id, limit, min_strength, exclude)


# Tag endpoints
@app.post("/tags", status_code=201)
async def create_tag(request: CreateTagRequest):
    """Create a tag (returns the existing id for a known name)."""
    tag_id = await get_engine().tags.create_tag(**request.model_dump())
    return {"id": tag_id}


@app.post("/tags/query")
async def query_tags(query: TagQuery):
    """Filter, sort and paginate tags."""
    return await get_engine().tags.query_tags(query)


@app.get("/tags/hierarchy")
async def tag_hierarchy(root_id: str | None = None):
    """Tag trees."""
    return await get_engine().tags.get_tag_hierarchy(root_id)


@app.post("/tags/recommend")
async def recommend_tags(request: RecommendTagsRequest):
    """Recommend tags for content."""
    return await get_engine().tags.recommend_tags(
        request.item_id,
        request.content,
        request.existing_tags,
        request.model_dump(exclude={"item_id", "content", "existing_tags"}),
    )


@app.post("/tags/extract")
async def extract_tags(request: ExtractTagsRequest):
    """Extract keyword tags from content."""
    return await get_engine().tags.extract_tags(
        request.content, request.max_tags, request.min_confidence
    )


@app.post("/tags/batch")
async def batch_tags(operations: list[BatchOperation]):
    """Apply tag create/update/delete operations best-effort."""
    return await get_engine().tags.batch(operations)


@app.get("/tags/{tag_id}")
async def get_tag(tag_id: str):
    """Get a tag by id."""
    tag = await get_engine().tags.get_tag(tag_id)
    if tag is None:
        raise HTTPException(status_code=404, detail="Tag not found")
    return tag


@app.patch("/tags/{tag_id}")
async def update_tag(tag_id: str, updates: dict[str, Any]):
    """Update a tag."""
    return await get_engine().tags.update_tag(tag_id, updates)


@app.delete("/tags/{tag_id}", status_code=204)
async def delete_tag(tag_id: str):
    """Delete a tag."""
    await get_engine().tags.delete_tag(tag_id)


@app.post("/tags/{tag_id}/use")
async def use_tag(tag_id: str, request: UseTagRequest):
    """Record that a tag was applied to an item."""
    return await get_engine().tags.use_tag(
        tag_id, request.item_id, request.method, request.context
    )


@app.get("/tags/{tag_id}/usage")
async def tag_usage(tag_id: str, limit: int | None = Query(default=None, ge=1)):
    """Usage history of a tag."""
    return await get_engine().tags.get_usage_history(tag_id, limit)
