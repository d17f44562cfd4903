"""HTTP surface for siteqa.

Public routes answer questions and expose a session's history; admin routes
(behind the admin token) cover session review, feedback, overrides and
on-demand indexing. Build the app with ``create_app``; run it with
``uvicorn server.rag_api:create_app --factory``.
"""

import datetime
import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import Field

from config.database import DatabaseConfig, close_database, initialize_database
from config.retrieval import RetrievalConfig, load_retrieval_config
from config.settings import Settings
from indexer.embeddings import EmbeddingClient
from indexer.sqlite_adapter import SQLiteAdapter
from observability.logging import setup_logging
from observability.metrics import setup_prometheus_metrics
from pipelines.crawler import PageFetcher
from pipelines.indexer import CorpusIndexer
from pipelines.policy import UrlPolicy
from services.errors import ValidationError
from services.generation import AnswerGenerator
from services.journal import SessionJournal
from services.models import CamelModel
from services.overrides import OverrideStore
from services.resolver import QueryResolver
from services.retrieval import Retriever

from .jobs import JobManager, JobRecord
from .security import AdminTokenGuard, setup_api_security

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


@dataclass
class SiteQAServices:
    """Everything the routes need, built once per process."""
    adapter: SQLiteAdapter
    journal: SessionJournal
    overrides: OverrideStore
    resolver: QueryResolver
    indexer: CorpusIndexer
    jobs: JobManager

    async def close(self):
        await self.indexer.close()


def build_services(settings: Settings, adapter: SQLiteAdapter,
                   config: Optional[RetrievalConfig] = None) -> SiteQAServices:
    """Wire the core components against a live adapter and the OpenAI clients."""
    config = config or load_retrieval_config(settings.retrieval_config_path)
    api_key = settings.require_openai_key()
    embedder = EmbeddingClient(
        api_key=api_key,
        model=settings.embedding_model,
        dimensions=settings.embedding_dim,
        timeout=settings.request_timeout,
    )
    generator = AnswerGenerator(
        api_key=api_key,
        model=settings.chat_model,
        normalize_model=settings.normalize_model,
        temperature=settings.temperature,
        max_output_tokens=settings.max_output_tokens,
        timeout=settings.request_timeout,
    )
    journal = SessionJournal(adapter)
    overrides = OverrideStore(adapter, embedder, threshold=config.override_similarity)
    resolver = QueryResolver(
        journal=journal,
        overrides=overrides,
        retriever=Retriever(adapter, config),
        embedder=embedder,
        generator=generator,
        config=config,
        site_name=settings.site_name,
        site_prefix=settings.site_prefix,
    )
    indexer = CorpusIndexer(
        adapter,
        embedder,
        fetcher=PageFetcher(request_timeout=settings.request_timeout, user_agent=settings.user_agent),
        policy=UrlPolicy(site_prefix=settings.site_prefix or None),
        config=config,
        concurrency=settings.index_concurrency,
    )
    return SiteQAServices(
        adapter=adapter,
        journal=journal,
        overrides=overrides,
        resolver=resolver,
        indexer=indexer,
        jobs=JobManager(),
    )


class AskRequest(CamelModel):
    question: Optional[str] = None
    q: Optional[str] = None
    session_id: Optional[str] = None
    sid: Optional[str] = None


class ResetRequest(CamelModel):
    sid: Optional[str] = None


class FeedbackRequest(CamelModel):
    mid: str
    correct: bool
    comment: str = ""
    sid: Optional[str] = None


class OverrideRequest(CamelModel):
    question: str
    answer: str
    force: bool = False
    reviewer: str = ""
    sid: Optional[str] = None
    assistant_mid: Optional[str] = None
    question_embedding: Optional[List[float]] = None


class IndexRequest(CamelModel):
    sitemap: Optional[str] = None
    max: Optional[int] = Field(default=None, ge=1)


def get_services(request: Request) -> SiteQAServices:
    services = request.app.state.services
    if services is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return services


def _dump(model) -> Dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True)


def create_app(settings: Optional[Settings] = None,
               services: Optional[SiteQAServices] = None) -> FastAPI:
    """Build the FastAPI application.

    Raises:
        ConfigurationError: if no admin token is configured.
    """
    settings = settings or Settings.from_env()
    admin_guard = AdminTokenGuard(settings.require_admin_token())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owns_services = app.state.services is None
        if owns_services:
            setup_logging(level=settings.log_level, use_json=settings.log_json)
            adapter = await initialize_database(DatabaseConfig(sqlite_path=settings.sqlite_path))
            app.state.services = build_services(settings, adapter)
            logger.info("siteqa services initialized")
        yield
        if owns_services:
            await app.state.services.close()
            await close_database()
            app.state.services = None

    app = FastAPI(title="siteqa", version=VERSION, lifespan=lifespan)
    app.state.services = services
    app.state.settings = settings

    setup_api_security(app, settings.allowed_origins)
    setup_prometheus_metrics(app)

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.get("/")
    async def root():
        return {"message": "siteqa", "version": VERSION, "health": "/health", "metrics": "/metrics"}

    @app.get("/health")
    async def health():
        return {"ok": True, "time": datetime.datetime.now(datetime.timezone.utc).isoformat()}

    @app.get("/stats")
    async def stats(svc: SiteQAServices = Depends(get_services)):
        return await svc.adapter.get_database_stats()

    @app.post("/ask")
    async def ask(request: Request, req: AskRequest,
                  svc: SiteQAServices = Depends(get_services)):
        meta = {
            "ip": request.client.host if request.client else "",
            "ua": request.headers.get("user-agent", ""),
        }
        result = await svc.resolver.ask(req.question or req.q or "", sid=req.session_id or req.sid, meta=meta)
        return {
            "sessionId": result.sid,
            "sid": result.sid,
            "answer": result.answer,
            "sources": result.sources,
            "turnId": result.mid,
        }

    @app.get("/history")
    async def history(sid: str = Query(...), svc: SiteQAServices = Depends(get_services)):
        turns = await svc.journal.history(sid)
        return {"sid": sid, "history": [_dump(t) for t in turns]}

    @app.post("/reset")
    async def reset(req: Optional[ResetRequest] = None, svc: SiteQAServices = Depends(get_services)):
        if req is not None and req.sid:
            await svc.journal.delete(req.sid)
        return {"ok": True}

    admin = APIRouter(dependencies=[Depends(admin_guard)])

    @admin.get("/admin/sessions")
    async def list_sessions(q: Optional[str] = None,
                            date_from: Optional[datetime.datetime] = Query(default=None, alias="from"),
                            date_to: Optional[datetime.datetime] = Query(default=None, alias="to"),
                            limit: int = 25, skip: int = 0,
                            svc: SiteQAServices = Depends(get_services)):
        page = await svc.journal.list_sessions(q=q, date_from=date_from, date_to=date_to,
                                               limit=limit, skip=skip)
        return _dump(page)

    @admin.get("/admin/session/{sid}")
    async def get_session(sid: str, svc: SiteQAServices = Depends(get_services)):
        session = await svc.journal.get(sid)
        if session is None:
            raise HTTPException(status_code=404, detail="Session not found")
        return _dump(session)

    @admin.delete("/admin/session/{sid}")
    async def delete_session(sid: str, svc: SiteQAServices = Depends(get_services)):
        return {"ok": True, "deleted": await svc.journal.delete(sid)}

    @admin.get("/admin/export.ndjson")
    async def export_sessions(svc: SiteQAServices = Depends(get_services)):
        async def lines() -> AsyncGenerator[str, None]:
            async for session in svc.journal.export_sessions():
                yield json.dumps(_dump(session)) + "\n"

        return StreamingResponse(
            lines(),
            media_type="application/x-ndjson",
            headers={"Content-Disposition": 'attachment; filename="sessions.ndjson"'},
        )

    @admin.post("/admin/feedback")
    async def feedback(req: FeedbackRequest, svc: SiteQAServices = Depends(get_services)):
        turn = await svc.journal.attach_feedback(req.mid, req.correct, req.comment, sid=req.sid)
        if turn is None:
            raise HTTPException(status_code=404, detail="Turn not found")
        return {"ok": True, "turn": _dump(turn)}

    @admin.get("/admin/overrides")
    async def list_overrides(q: Optional[str] = None, force: Optional[bool] = None,
                             limit: int = Query(default=50, ge=1, le=200),
                             skip: int = Query(default=0, ge=0),
                             svc: SiteQAServices = Depends(get_services)):
        total, rows = await svc.overrides.list(q=q, force=force, limit=limit, skip=skip)
        return {"total": total, "limit": limit, "skip": skip, "rows": [_dump(o) for o in rows]}

    @admin.post("/admin/overrides")
    async def upsert_override(req: OverrideRequest, svc: SiteQAServices = Depends(get_services)):
        saved = await svc.overrides.upsert(
            req.question,
            req.answer,
            force=req.force,
            reviewer=req.reviewer,
            sid=req.sid,
            assistant_mid=req.assistant_mid,
            question_embedding=req.question_embedding,
        )
        return {"ok": True, "override": _dump(saved), "hasEmbedding": saved.has_embedding}

    @admin.delete("/admin/overrides/{override_id}")
    async def delete_override(override_id: int, svc: SiteQAServices = Depends(get_services)):
        if not await svc.overrides.delete(override_id):
            raise HTTPException(status_code=404, detail="Override not found")
        return {"ok": True}

    @admin.post("/admin/reset-index")
    async def reset_index(svc: SiteQAServices = Depends(get_services)):
        pages, chunks = await svc.indexer.reset()
        return {"ok": True, "pages": pages, "chunks": chunks}

    @admin.post("/index", status_code=202)
    async def start_index(background_tasks: BackgroundTasks,
                          req: Optional[IndexRequest] = None,
                          svc: SiteQAServices = Depends(get_services)):
        req = req or IndexRequest()
        sitemap = req.sitemap or settings.sitemap_url
        if not sitemap:
            raise HTTPException(status_code=400, detail="sitemap is required")
        max_urls = req.max or settings.url_cap

        async def run_index(job: JobRecord) -> Dict[str, Any]:
            async def on_progress(done: int, total: int):
                job.progress = {"done": done, "total": total}

            summary = await svc.indexer.index_sitemap(
                sitemap, max_urls=max_urls, site_prefix=settings.site_prefix or None, on_progress=on_progress
            )
            return summary.to_dict()

        job = svc.jobs.create_job("index", {"sitemap": sitemap, "max": max_urls}, handler=run_index)
        # Runs after the response is sent, inside this process
        background_tasks.add_task(svc.jobs.run_job, job.id)
        return {"ok": True, "jobId": job.id, "status": job.status.value}

    @admin.get("/index/jobs/{job_id}")
    async def get_job(job_id: str, svc: SiteQAServices = Depends(get_services)):
        job = svc.jobs.get_job(job_id)
        if job is None:
            raise HTTPException(status_code=404, detail="Job not found")
        return job.to_dict()

    app.include_router(admin)
    return app


def main():
    import uvicorn

    uvicorn.run("server.rag_api:create_app", factory=True, host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
