import asyncio
from typing import List, Optional
from urllib.parse import quote

from fastapi import APIRouter, UploadFile, File, Depends, Query, Response
from fastapi.responses import StreamingResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from findocs.core import runtime_state
from findocs.core.config import get_settings
from findocs.core.errors import NotFoundError, ValidationError
from findocs.db import repository
from findocs.db.session import get_db, engine
from findocs.schemas.base import (
    AskRequest,
    CorpusAnswer,
    DashboardStats,
    DocumentAnswer,
    DocumentDetail,
    DocumentList,
    DocumentOut,
    HealthResponse,
    PageInsightOut,
    PageInsightRequest,
    PageOut,
    QaHistoryOut,
    ReprocessOut,
    SearchRequest,
    SearchResponse,
    StatusOut,
    SummaryOut,
)
from findocs.services import rag, tasks
from findocs.services import search as search_service
from findocs.services.storage import get_object_store
from findocs.utils.logging import setup_logging

logger = setup_logging()

router = APIRouter(prefix="/api")
router_health = APIRouter()
settings = get_settings()


async def _require_document(db: AsyncSession, document_id: int):
    doc = await repository.get_document(db, document_id)
    if doc is None:
        raise NotFoundError("Document not found")
    return doc


def _content_disposition(kind: str, filename: str) -> str:
    quoted = quote(filename)
    if quoted != filename:
        return f"{kind}; filename*=utf-8''{quoted}"
    return f'{kind}; filename="{filename}"'


@router_health.get("/health", response_model=HealthResponse)
async def health():
    components: dict = {}
    try:
        async with engine.begin() as conn:
            await conn.execute(select(1))
        components["database"] = "ok"
    except Exception as e:  # pragma: no cover
        components["database"] = f"error: {e}"
    try:
        await asyncio.to_thread(get_object_store().ping)
        components["storage"] = "ok"
    except Exception as e:  # pragma: no cover
        components["storage"] = f"error: {e}"
    components["generation"] = runtime_state.generation_status(bool(settings.gemini_api_key))
    components["pipeline_runs_in_flight"] = tasks.runner.pending
    overall = "ok" if components["database"] == "ok" and components["storage"] == "ok" else "degraded"
    return {"status": overall, "components": components}


@router.get("/dashboard/stats", response_model=DashboardStats)
async def dashboard_stats(db: AsyncSession = Depends(get_db)):
    return await repository.document_stats(db)


@router.post("/documents/upload", response_model=DocumentOut, status_code=201)
async def upload(file: Optional[UploadFile] = File(None), db: AsyncSession = Depends(get_db)):
    if file is None or not file.filename:
        raise ValidationError("No file uploaded")
    tasks.check_upload_size(file.size)
    # one byte past the limit is enough for the size check in submit_document
    content = await file.read(settings.max_upload_bytes + 1)
    doc = await tasks.submit_document(db, content, file.filename, file.content_type)
    logger.info(f"Stored file {file.filename} as {doc.file_path} (doc_id={doc.id})")
    return doc


@router.get("/documents", response_model=DocumentList)
async def list_documents(
    doc_type: Optional[str] = Query(None, alias="type"),
    status: Optional[str] = None,
    search: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
):
    docs = await repository.list_documents(db, doc_type=doc_type, status=status, search=search)
    return {"documents": docs, "total": len(docs)}


@router.get("/documents/{document_id}", response_model=DocumentDetail)
async def get_document(document_id: int, db: AsyncSession = Depends(get_db)):
    doc = await _require_document(db, document_id)
    pages = await repository.get_pages(db, document_id)
    # pages are loaded explicitly; the lazy relationship is not usable under asyncio
    return DocumentDetail(
        **DocumentOut.model_validate(doc).model_dump(),
        pages=[PageOut.model_validate(p) for p in pages],
    )


@router.get("/documents/{document_id}/status", response_model=StatusOut)
async def document_status(document_id: int, db: AsyncSession = Depends(get_db)):
    return await tasks.document_status(db, document_id)


@router.get("/documents/{document_id}/download")
async def download_document(document_id: int, db: AsyncSession = Depends(get_db)):
    doc = await _require_document(db, document_id)
    body = await asyncio.to_thread(get_object_store().iter_chunks, doc.file_path)
    return StreamingResponse(
        body,
        media_type=doc.file_type,
        headers={"Content-Disposition": _content_disposition("attachment", doc.original_filename)},
    )


@router.get("/documents/{document_id}/view")
async def view_document(document_id: int, db: AsyncSession = Depends(get_db)):
    doc = await _require_document(db, document_id)
    body = await asyncio.to_thread(get_object_store().iter_chunks, doc.file_path)
    return StreamingResponse(
        body,
        media_type=doc.file_type,
        headers={"Content-Disposition": _content_disposition("inline", doc.original_filename)},
    )


@router.delete("/documents/{document_id}", status_code=204)
async def delete_document(document_id: int, db: AsyncSession = Depends(get_db)):
    await tasks.delete_document(db, document_id)
    return Response(status_code=204)


@router.post("/documents/{document_id}/reprocess", response_model=ReprocessOut)
async def reprocess_document(document_id: int, db: AsyncSession = Depends(get_db)):
    await tasks.reprocess_document(db, document_id)
    return {"message": "Document reprocessing started", "document_id": document_id}


@router.post("/documents/{document_id}/summary", response_model=SummaryOut)
async def summarize_document(document_id: int, db: AsyncSession = Depends(get_db)):
    return await rag.summarize_document(db, document_id)


@router.post("/documents/{document_id}/page-insight", response_model=PageInsightOut)
async def page_insight(document_id: int, req: PageInsightRequest, db: AsyncSession = Depends(get_db)):
    return await rag.page_insight(db, document_id, req.page_number)


@router.post("/documents/{document_id}/ask", response_model=DocumentAnswer)
async def ask_document(document_id: int, req: AskRequest, db: AsyncSession = Depends(get_db)):
    return await rag.ask_document(db, document_id, req.question)


@router.post("/search", response_model=SearchResponse)
async def search_documents(req: SearchRequest, db: AsyncSession = Depends(get_db)):
    results = await search_service.search(db, req.query, req.limit)
    return {"results": results, "total": len(results)}


@router.post("/qa/ask", response_model=CorpusAnswer)
async def ask_corpus(req: AskRequest, db: AsyncSession = Depends(get_db)):
    return await rag.ask_corpus(db, req.question)


@router.get("/qa/history", response_model=List[QaHistoryOut])
async def qa_history(db: AsyncSession = Depends(get_db)):
    return await rag.recent_history(db)
