"""
HTTP API adapter for the mnemo memory engine.

Architectural role:
- Expose the `MemoryEngine` host operations as JSON endpoints.
- Validate request bodies with pydantic models.
- Map engine failures to HTTP status codes.

Endpoints:
- `POST /search`                   memory index search
- `POST /conversations/search`     conversation search
- `POST /conversations/expand`     messages around one exchange
- `POST /index/rebuild`            full rebuild (`target`: memory | conversations | all)
- `POST /index/update`             incremental update (same targets)
- `POST /index/sources`            targeted reindex of changed paths
- `POST /journal`                  append a journal entry
- `GET  /journal`                  recent journal entries
- `GET  /stats`                    index sizes

Error handling strategy:
- `CollaboratorUnavailable` -> HTTP 503.
- `IndexBusyError` -> HTTP 409.
- `ValueError` (bad timestamp, blank journal text) -> HTTP 400.
- Missing session file on expand -> HTTP 404.

The engine lives on `app.state` and is created lazily on first request.
Handlers receive it through the `get_engine` dependency, which tests
override via `app.dependency_overrides`.
"""

from dotenv import load_dotenv

load_dotenv()

import logging
from typing import Literal

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from mnemo.core import config
from mnemo.core.engine import MemoryEngine
from mnemo.core.errors import CollaboratorUnavailable, ConfigurationError, IndexBusyError


logger = logging.getLogger(__name__)

app = FastAPI(title="mnemo")


def get_engine(request: Request):
    """Return the app-scoped engine, creating it on first use."""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        engine = MemoryEngine()
        request.app.state.engine = engine
    return engine


# ============================================================
# Request Schemas
# ============================================================

class SearchRequest(BaseModel):
    query: str
    limit: int = Field(default=config.DEFAULT_SEARCH_LIMIT, ge=1, le=100)
    type: Literal["journal", "entity-section"] | None = None
    since: str | None = None


class ConversationSearchRequest(BaseModel):
    query: str
    limit: int = Field(default=config.DEFAULT_SEARCH_LIMIT, ge=1, le=100)
    project_only: bool = False
    current_context: str | None = None


class ExpandRequest(BaseModel):
    session_path: str
    message_uuid: str
    context_messages: int = Field(default=10, ge=1, le=200)


class IndexRequest(BaseModel):
    target: Literal["memory", "conversations", "all"] = "memory"


class SourcesRequest(BaseModel):
    paths: list[str]


class JournalRequest(BaseModel):
    topic: str
    content: str
    metadata: dict | None = None


# ============================================================
# Error Mapping
# ============================================================

@app.exception_handler(CollaboratorUnavailable)
async def _collaborator_unavailable(request: Request, exc: CollaboratorUnavailable):
    logger.error("Collaborator failure on %s", request.url.path, exc_info=exc)
    return JSONResponse(status_code=503, content={"error": str(exc)})


@app.exception_handler(IndexBusyError)
async def _index_busy(request: Request, exc: IndexBusyError):
    return JSONResponse(status_code=409, content={"error": str(exc)})


@app.exception_handler(ConfigurationError)
async def _configuration_error(request: Request, exc: ConfigurationError):
    return JSONResponse(status_code=500, content={"error": str(exc)})


@app.exception_handler(ValueError)
async def _bad_value(request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"error": str(exc)})


@app.exception_handler(FileNotFoundError)
async def _not_found(request: Request, exc: FileNotFoundError):
    return JSONResponse(status_code=404, content={"error": str(exc)})


# ============================================================
# Search
# ============================================================

@app.post("/search")
async def search(body: SearchRequest, engine=Depends(get_engine)):
    response = await engine.search(body.query, limit=body.limit, type=body.type, since=body.since)
    return response.to_dict()


@app.post("/conversations/search")
async def search_conversations(body: ConversationSearchRequest, engine=Depends(get_engine)):
    response = await engine.search_conversations(
        body.query,
        limit=body.limit,
        project_only=body.project_only,
        current_context=body.current_context,
    )
    return response.to_dict()


@app.post("/conversations/expand")
async def expand_conversation(body: ExpandRequest, engine=Depends(get_engine)):
    return await engine.expand_conversation(body.session_path, body.message_uuid, body.context_messages)


# ============================================================
# Indexing
# ============================================================

def _targets(target):
    if target == "all":
        return ("memory", "conversations")
    return (target,)


@app.post("/index/rebuild")
async def rebuild(body: IndexRequest, engine=Depends(get_engine)):
    payload = {}
    for target in _targets(body.target):
        if target == "memory":
            payload[target] = await engine.rebuild_index()
        else:
            payload[target] = await engine.rebuild_conversation_index()
    return payload


@app.post("/index/update")
async def update(body: IndexRequest, engine=Depends(get_engine)):
    payload = {}
    for target in _targets(body.target):
        if target == "memory":
            payload[target] = await engine.update_index()
        else:
            payload[target] = await engine.update_conversation_index()
    return payload


@app.post("/index/sources")
async def index_sources(body: SourcesRequest, engine=Depends(get_engine)):
    return {"results": await engine.index_sources(body.paths)}


# ============================================================
# Journal & Stats
# ============================================================

@app.post("/journal")
async def log_journal(body: JournalRequest, engine=Depends(get_engine)):
    return await engine.log_journal(body.topic, body.content, body.metadata)


@app.get("/journal")
async def recent_journal(count: int = 10, topic: str | None = None, engine=Depends(get_engine)):
    return {"entries": await engine.get_recent_journal(count, topic)}


@app.get("/stats")
async def stats(engine=Depends(get_engine)):
    return await engine.stats()
