#!/usr/bin/env python3
"""
JSON API for scholarcast.
Thin layer over PipelineOrchestrator: search, paper lookups, similar papers,
research reports, search history, PDF uploads and audio downloads.
A background task sweeps expired audio.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.responses import FileResponse
from pydantic import BaseModel, Field

from scholarcast.config import HISTORY_LIMIT, MAX_RESULTS_LIMIT, MAX_UPLOAD_BYTES, REPORT_PAPER_COUNT
from scholarcast.context import ServiceContext, build_context
from scholarcast.errors import BatchFailure, QueryValidationError, StageFailure
from scholarcast.orchestrator import PipelineOrchestrator

logger = logging.getLogger(__name__)


class SearchRequest(BaseModel):
    query: str
    max_results: int = Field(default=5, ge=1, le=MAX_RESULTS_LIMIT)
    generate_report: bool = False
    use_fallbacks: bool = True


class ReportRequest(BaseModel):
    query: str
    max_results: int = Field(default=REPORT_PAPER_COUNT, ge=1, le=MAX_RESULTS_LIMIT)
    use_fallbacks: bool = True


async def _cleanup_loop(orchestrator: PipelineOrchestrator, interval_minutes: float):
    while True:
        await asyncio.sleep(interval_minutes * 60)
        try:
            await asyncio.to_thread(orchestrator.cleanup_audio)
        except Exception as e:
            logger.error(f"Audio cleanup sweep failed: {e}")


def create_app(context: Optional[ServiceContext] = None, run_cleanup: bool = True) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owns_context = context is None
        ctx = context or build_context()
        orchestrator = PipelineOrchestrator(ctx)
        app.state.context = ctx
        app.state.orchestrator = orchestrator
        task = None
        if run_cleanup and ctx.settings.cleanup_interval_minutes > 0:
            task = asyncio.create_task(_cleanup_loop(orchestrator, ctx.settings.cleanup_interval_minutes))
        try:
            yield
        finally:
            if task is not None:
                task.cancel()
            if owns_context:
                await ctx.aclose()

    app = FastAPI(title="scholarcast", lifespan=lifespan)

    def _orch(request: Request) -> PipelineOrchestrator:
        return request.app.state.orchestrator

    @app.get("/health")
    def health(request: Request):
        ctx = request.app.state.context
        return {
            "status": "ok",
            "indexed_vectors": len(ctx.index),
            "reports_in_memory": len(ctx.registry),
        }

    async def _search(request: Request, query: str, max_results: int,
                      generate_report: bool, use_fallbacks: bool) -> dict:
        try:
            result = await _orch(request).run_search(
                query, max_results=max_results,
                generate_report=generate_report, use_fallbacks=use_fallbacks,
            )
        except QueryValidationError as e:
            raise HTTPException(status_code=400, detail=e.verdict.reason)
        except BatchFailure as e:
            raise HTTPException(status_code=502, detail=e.reason)
        return result.to_dict()

    @app.post("/search")
    async def search(body: SearchRequest, request: Request):
        return await _search(request, body.query, body.max_results, body.generate_report, body.use_fallbacks)

    @app.post("/research-report")
    async def research_report(body: ReportRequest, request: Request):
        result = await _search(request, body.query, body.max_results, True, body.use_fallbacks)
        if result["report"] is None:
            raise HTTPException(status_code=502, detail=result["report_error"] or "Report assembly failed")
        return result

    @app.get("/history")
    def history(request: Request, limit: int = Query(default=HISTORY_LIMIT, ge=1, le=200)):
        searches = _orch(request).search_history(limit)
        return {"searches": searches, "count": len(searches)}

    @app.post("/convert-document")
    async def convert_document(request: Request, file: UploadFile = File(...),
                               use_fallbacks: bool = Form(default=True)):
        filename = file.filename or "document.pdf"
        if file.content_type != "application/pdf" and not filename.lower().endswith(".pdf"):
            raise HTTPException(status_code=415, detail="Only PDF files are allowed")
        content = await file.read(MAX_UPLOAD_BYTES + 1)
        if len(content) > MAX_UPLOAD_BYTES:
            limit_mb = MAX_UPLOAD_BYTES // (1024 * 1024)
            raise HTTPException(status_code=413, detail=f"File exceeds {limit_mb} MB limit")
        if not content:
            raise HTTPException(status_code=400, detail="Uploaded file is empty")
        try:
            result = await _orch(request).convert_document(content, filename, use_fallbacks=use_fallbacks)
        except StageFailure as e:
            raise HTTPException(status_code=502, detail=str(e))
        return result.to_dict()

    @app.get("/reports/{report_id}")
    def get_report(report_id: str, request: Request):
        report = _orch(request).get_report(report_id)
        if report is None:
            raise HTTPException(status_code=404, detail="Report not found")
        return report.to_dict()

    @app.get("/papers")
    def list_papers(request: Request, limit: int = Query(default=50, ge=1, le=500)):
        papers = _orch(request).list_papers(limit)
        return {"papers": [p.to_dict() for p in papers], "count": len(papers)}

    @app.get("/papers/search")
    def search_papers(request: Request, q: str = Query(min_length=1), limit: int = Query(default=10, ge=1, le=100)):
        papers = _orch(request).search_papers(q, limit)
        return {"query": q, "papers": [p.to_dict() for p in papers], "count": len(papers)}

    @app.get("/papers/{paper_id}")
    def get_paper(paper_id: str, request: Request):
        paper = _orch(request).get_paper(paper_id)
        if paper is None:
            raise HTTPException(status_code=404, detail="Paper not found")
        return paper.to_dict()

    @app.get("/papers/{paper_id}/similar")
    def similar_papers(paper_id: str, request: Request, k: int = Query(default=5, ge=1, le=50),
                       include_placeholders: bool = True):
        matches = _orch(request).query_similar(paper_id, k, include_placeholders=include_placeholders)
        if matches is None:
            raise HTTPException(status_code=404, detail="Paper has no embedding")
        return {"paper_id": paper_id, "similar": [{"paper_id": pid, "score": s} for pid, s in matches]}

    @app.delete("/papers/{paper_id}")
    def delete_paper(paper_id: str, request: Request):
        if not _orch(request).delete_paper(paper_id):
            raise HTTPException(status_code=404, detail="Paper not found")
        return {"deleted": paper_id}

    @app.get("/stats")
    def stats(request: Request):
        return _orch(request).paper_stats()

    @app.get("/audio/{filename}")
    def audio(filename: str, request: Request):
        root = Path(request.app.state.context.settings.storage_path).resolve()
        file_path = (root / filename).resolve()
        if not file_path.is_relative_to(root):
            raise HTTPException(status_code=403, detail="Access denied")
        if not file_path.is_file():
            raise HTTPException(status_code=404, detail=f"File not found: {filename}")
        media_type = "audio/mpeg" if file_path.suffix == ".mp3" else "audio/wav"
        return FileResponse(path=file_path, filename=filename, media_type=media_type)

    return app


app = create_app()
