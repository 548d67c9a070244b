"""
Company Brain Server

FastAPI service over the knowledge pipeline. No auth and no multipart:
file content arrives base64-encoded in JSON.

Endpoints:
- GET /health: Health check
- POST /chat: Answer a question within an access scope
- POST /knowledge: Ingest one file
- POST /knowledge/batch: Ingest many files (bounded concurrency)
- GET /knowledge: List articles visible to a scope
- GET /knowledge/{article_id}: Get one article
- DELETE /knowledge/{article_id}: Delete from both stores
- POST /knowledge/reconcile: Consistency sweep between the stores

Components are built once in the lifespan (or injected via create_app) and
kept on app.state; handlers receive them through a dependency.
"""

import base64
import binascii
import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from pydantic import BaseModel, Field, field_validator

from . import __version__
from .common.article_store import validate_article_id
from .common.config import configure_logging, ensure_directories, load_config
from .common.errors import ExtractionFailed, InvalidArticleId
from .common.schemas.knowledge import KnowledgeArticle, SourceType
from .common.schemas.organization import MemberRecord, OrganizationSnapshot, ProjectRecord
from .ingest.ingestor import IngestRequest
from .services import BrainServices, build_services

logger = logging.getLogger("brain.server")


# =============================================================================
# Request Models
# =============================================================================

class ChatRequest(BaseModel):
    """Question plus optional live organizational records"""
    question: str
    scope: Optional[str] = None
    projects: Optional[List[Dict[str, Any]]] = None
    members: Optional[List[Dict[str, Any]]] = None


class KnowledgeUpload(BaseModel):
    """One file to ingest"""
    content_base64: str
    display_name: str
    media_type: str = ""
    source_url: Optional[str] = None
    access_scope: Optional[List[str]] = None
    source_type: SourceType = SourceType.UPLOAD
    article_id: Optional[str] = None
    title: Optional[str] = None
    tags: List[str] = Field(default_factory=list)

    @field_validator("article_id")
    @classmethod
    def _safe_article_id(cls, v: Optional[str]) -> Optional[str]:
        return validate_article_id(v) if v is not None else v


class BatchUpload(BaseModel):
    files: List[KnowledgeUpload]
    stop_on_error: bool = False


# =============================================================================
# App
# =============================================================================

def get_services(request: Request) -> BrainServices:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Services not initialized")
    return services


def create_app(services: Optional[BrainServices] = None) -> FastAPI:
    """Build the app; without services they are built from config at startup"""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "services", None) is None:
            config = load_config()
            configure_logging(config.server.log_level)
            ensure_directories(config)
            app.state.services = build_services(config)
        logger.info("Company Brain ready")
        yield
        logger.info("Company Brain shutting down")

    app = FastAPI(
        title="Company Brain",
        description="Internal knowledge retrieval and answer generation",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.services = services

    _register_routes(app)
    return app


def _to_ingest_request(upload: KnowledgeUpload) -> IngestRequest:
    try:
        data = base64.b64decode(upload.content_base64, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=400, detail=f"Invalid base64 content for {upload.display_name}")
    return IngestRequest(
        file_bytes=data,
        media_type=upload.media_type,
        display_name=upload.display_name,
        source_url=upload.source_url,
        access_scope=upload.access_scope,
        source_type=upload.source_type,
        article_id=upload.article_id,
        title=upload.title,
        tags=list(upload.tags),
    )


def _article_summary(article: KnowledgeArticle) -> Dict[str, Any]:
    return article.model_dump(mode="json", exclude={"content"})


def _register_routes(app: FastAPI) -> None:

    @app.get("/health")
    async def health(services: BrainServices = Depends(get_services)):
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "company-brain",
            "version": __version__,
            "llm_available": services.llm.is_available,
            "embeddings_available": services.embedder.is_available,
            "vector_available": services.vectors.is_available,
            "candidate_models": services.chain.candidates,
        }

    @app.post("/chat")
    async def chat(body: ChatRequest, services: BrainServices = Depends(get_services)):
        """Answer a question. Model failures come back as a classified message."""
        if not body.question.strip():
            raise HTTPException(status_code=400, detail="Question must not be empty")

        snapshot = None
        if body.projects is not None or body.members is not None:
            try:
                snapshot = OrganizationSnapshot(
                    projects=[ProjectRecord.model_validate(p) for p in body.projects or []],
                    members=[MemberRecord.model_validate(m) for m in body.members or []],
                )
            except ValueError as e:
                raise HTTPException(status_code=422, detail=f"Invalid organizational records: {e}")

        answer = await services.ask(body.question, body.scope, snapshot)
        return answer.to_dict()

    @app.post("/knowledge")
    async def ingest_knowledge(body: KnowledgeUpload, services: BrainServices = Depends(get_services)):
        """Ingest one base64-encoded file"""
        request = _to_ingest_request(body)
        try:
            article = await services.ingestor.ingest(request)
        except (ExtractionFailed, InvalidArticleId) as e:
            raise HTTPException(status_code=422, detail=str(e))
        return article.model_dump(mode="json")

    @app.post("/knowledge/batch")
    async def ingest_batch(body: BatchUpload, services: BrainServices = Depends(get_services)):
        """Ingest many files; per-file failures are reported, not raised"""
        requests = [_to_ingest_request(f) for f in body.files]
        result = await services.ingestor.ingest_batch(requests, stop_on_error=body.stop_on_error)
        return {
            "articles": [_article_summary(a) for a in result.articles],
            "failures": [asdict(f) for f in result.failures],
            "aborted": result.aborted,
        }

    @app.get("/knowledge")
    async def list_knowledge(scope: Optional[str] = None, services: BrainServices = Depends(get_services)):
        """List articles visible to a scope (content omitted)"""
        articles = await services.index.list_articles(scope)
        return {"count": len(articles), "items": [_article_summary(a) for a in articles]}

    @app.get("/knowledge/{article_id}")
    async def get_knowledge(
        article_id: str,
        scope: Optional[str] = None,
        services: BrainServices = Depends(get_services),
    ):
        """Get one article"""
        article = await services.index.get(article_id)
        if article is None or not article.is_visible_to(services.index.effective_scope(scope)):
            raise HTTPException(status_code=404, detail="Article not found")
        return article.model_dump(mode="json")

    @app.delete("/knowledge/{article_id}")
    async def delete_knowledge(article_id: str, services: BrainServices = Depends(get_services)):
        """Delete an article from the durable store and the vector index"""
        if await services.index.get(article_id) is None:
            raise HTTPException(status_code=404, detail="Article not found")
        consistent = await services.index.delete(article_id)
        return {"status": "deleted", "id": article_id, "consistent": consistent}

    @app.post("/knowledge/reconcile")
    async def reconcile(services: BrainServices = Depends(get_services)):
        """Run the consistency sweep between the durable store and the vector index"""
        report = await services.index.reconcile()
        return {"ok": report.ok, **asdict(report)}


app = create_app()


# =============================================================================
# CLI Entry Point
# =============================================================================

def run_server():
    """Run the Company Brain server"""
    import uvicorn

    config = load_config()
    configure_logging(config.server.log_level)

    logger.info("Starting server on %s:%d", config.server.host, config.server.port)
    uvicorn.run(
        "brain.server:app",
        host=config.server.host,
        port=config.server.port,
        reload=False,
    )


if __name__ == "__main__":
    run_server()
