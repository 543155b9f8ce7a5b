# magic_kb/app/api.py
from __future__ import annotations

import logging
import os
from typing import Literal, Optional

from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from magic_kb.app.container import build_container
from magic_kb.common.errors import (
    EmbeddingError,
    FetchError,
    FileTooLargeError,
    FormatError,
    KnowledgeBaseError,
    StorageError,
    ValidationError,
)
from magic_kb.config import GlobalConfig

app = FastAPI(title="Magic KB API", version="0.1.0")
logger = logging.getLogger("magic_kb.api")


class IngestRequest(BaseModel):
    project_id: str
    source_kind: Literal["text", "url"]
    payload: str
    declared_type: Optional[Literal["md", "html", "pdf", "docx"]] = None
    title: Optional[str] = None
    timeout: Optional[float] = Field(default=None, gt=0)


class IngestResponse(BaseModel):
    asset_id: str
    chunk_count: int
    is_new: bool
    embedded: bool
    title: str


class RetrieveRequest(BaseModel):
    project_id: str
    query: str
    k: Optional[int] = None
    timeout: Optional[float] = Field(default=None, gt=0)


class RetrievedChunk(BaseModel):
    rank: int
    chunk_id: str
    score: float
    text: str
    heading_path: list[str] = Field(default_factory=list)
    source: str


class RetrieveResponse(BaseModel):
    chunks: list[RetrievedChunk] = Field(default_factory=list)
    context_pack: str = ""
    no_relevant_content: bool


class IndexRequest(BaseModel):
    project_id: str


class IndexResponse(BaseModel):
    indexed_count: int


def _status_for(exc: KnowledgeBaseError) -> int:
    if isinstance(exc, FileTooLargeError):
        return 413
    if isinstance(exc, (ValidationError, FormatError, FetchError)):
        return 400
    if isinstance(exc, EmbeddingError):
        return 502
    return 500


@app.exception_handler(KnowledgeBaseError)
async def knowledge_base_error_handler(request: Request, exc: KnowledgeBaseError):
    status = _status_for(exc)
    if isinstance(exc, StorageError) or status >= 500:
        logger.error("Error while handling %s", request.url.path, exc_info=exc)
    else:
        logger.info("Rejected %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=status,
        content={"error": exc.user_message, "type": type(exc).__name__},
    )


@app.on_event("startup")
def startup():
    # Use env var so Docker can pass config location
    cfg_path = os.environ.get("MAGIC_KB_CONFIG", "/app/config/config.yaml")
    cfg = GlobalConfig.load(cfg_path)
    app.state.container = build_container(cfg)


@app.on_event("shutdown")
def shutdown():
    container = getattr(app.state, "container", None)
    if container is not None:
        container.close()


@app.get("/health")
def health():
    return {"status": "ok"}


@app.post("/v1/ingest", response_model=IngestResponse)
def ingest(req: IngestRequest):
    result = app.state.container.ingestion_pipeline.ingest(
        req.project_id,
        req.source_kind,
        req.payload,
        req.declared_type,
        title=req.title,
        timeout=req.timeout,
    )
    return IngestResponse(**result.to_dict())


@app.post("/v1/ingest/file", response_model=IngestResponse)
def ingest_file(
    project_id: str = Form(...),
    file: UploadFile = File(...),
    declared_type: Optional[str] = Form(None),
    title: Optional[str] = Form(None),
):
    data = file.file.read()
    result = app.state.container.ingestion_pipeline.ingest(
        project_id,
        "file",
        data,
        declared_type or None,
        title=title,
        filename=file.filename,
    )
    return IngestResponse(**result.to_dict())


@app.post("/v1/retrieve", response_model=RetrieveResponse)
async def retrieve(req: RetrieveRequest):
    container = app.state.container
    k = req.k if req.k is not None else container.config.retrieval["default_k"]
    result = await container.retrieval_pipeline.aretrieve(
        req.project_id, req.query, k, timeout=req.timeout
    )
    chunks = [
        RetrievedChunk(
            rank=idx,
            chunk_id=c.chunk_id,
            score=c.score,
            text=c.text,
            heading_path=list(c.heading_path),
            source=c.source,
        )
        for idx, c in enumerate(result.chunks, start=1)
    ]
    return RetrieveResponse(
        chunks=chunks,
        context_pack=result.context_pack,
        no_relevant_content=result.no_relevant_content,
    )


@app.post("/v1/index", response_model=IndexResponse)
def index(req: IndexRequest):
    result = app.state.container.backfill.run(req.project_id)
    return IndexResponse(indexed_count=result.indexed_count)


@app.get("/v1/projects/{project_id}/stats")
def project_stats(project_id: str):
    container = app.state.container
    return {
        "project_id": project_id,
        "assets": len(container.doc_store.list_assets(project_id)),
        "embeddings": container.vector_index.embedding_stats(project_id),
        "lexical": container.lexical_index.lexical_stats(project_id),
    }
