"""Background ingestion pipeline: upload -> extract -> index -> classify.

Runs are asyncio tasks inside the API process (no Celery/Redis). Each
document has its own lock so a reprocess never interleaves with a run
already in flight for the same id.
"""
import asyncio
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Dict, Optional, Set

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from findocs.core.config import get_settings
from findocs.core.errors import NotFoundError, ValidationError
from findocs.db import repository
from findocs.db.models import Document, ProcessingStatus
from findocs.db.session import SessionLocal
from findocs.services import chunking, classifier, parsing
from findocs.services.storage import get_object_store, store_file

settings = get_settings()


class PipelineRunner:
    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()
        self._locks: Dict[int, asyncio.Lock] = {}
        self._holders: Dict[int, int] = {}

    @asynccontextmanager
    async def hold(self, document_id: int):
        """Exclusive access to one document; the lock is dropped once nobody holds or awaits it."""
        lock = self._locks.setdefault(document_id, asyncio.Lock())
        self._holders[document_id] = self._holders.get(document_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[document_id] -= 1
            if not self._holders[document_id]:
                del self._holders[document_id]
                del self._locks[document_id]

    @property
    def tracked_locks(self) -> int:
        return len(self._locks)

    def schedule(self, document_id: int, reset: bool = False) -> asyncio.Task:
        task = asyncio.create_task(run_pipeline(document_id, reset=reset))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every scheduled run to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


runner = PipelineRunner()


async def _trigger(document_id: int, reset: bool = False) -> None:
    if settings.sync_ingest:
        await run_pipeline(document_id, reset=reset)
    else:
        runner.schedule(document_id, reset=reset)


def title_from_filename(filename: str) -> str:
    stem, _ext = os.path.splitext(os.path.basename(filename or ""))
    return stem or filename or "Untitled"


def _clean_content_type(content_type: Optional[str]) -> str:
    return (content_type or "").split(";")[0].strip().lower()


def check_upload_size(size: Optional[int]) -> None:
    if size is not None and size > settings.max_upload_bytes:
        raise ValidationError(f"File too large. Maximum size is {settings.max_upload_bytes // (1024 * 1024)} MB.")


async def submit_document(session: AsyncSession, data: bytes, filename: str, content_type: str) -> Document:
    content_type = _clean_content_type(content_type)
    if not filename:
        raise ValidationError("No file uploaded")
    if content_type not in settings.allowed_content_types:
        raise ValidationError("Invalid file type. Only PDF, Excel, CSV, Word, and images are allowed.")
    check_upload_size(len(data))
    file_path = await asyncio.to_thread(store_file, data, content_type)
    doc = await repository.create_document(
        session,
        title=title_from_filename(filename),
        original_filename=filename,
        file_path=file_path,
        file_size_bytes=len(data),
        file_type=content_type,
        processing_status=ProcessingStatus.pending.value,
    )
    if settings.pipeline_debug:
        logger.info(
            f"[PIPELINE][SUBMIT] doc_id={doc.id} file={filename} content_type={content_type} bytes={len(data)}"
        )
    await _trigger(doc.id)
    if settings.sync_ingest:
        await session.refresh(doc)
    return doc


async def _process(session: AsyncSession, document_id: int) -> None:
    doc = await repository.get_document(session, document_id)
    if doc is None:
        logger.warning(f"Pipeline skipped: document {document_id} no longer exists")
        return
    await repository.delete_pages_and_chunks(session, document_id)
    await repository.update_document(session, document_id, processing_status=ProcessingStatus.processing.value)
    data = await asyncio.to_thread(get_object_store().open_for_read, doc.file_path)
    if settings.pipeline_debug:
        logger.info(f"[PIPELINE][INGEST][download] doc_id={document_id} bytes={len(data)}")
    result = await asyncio.to_thread(parsing.extract, data, doc.file_type)
    if settings.pipeline_debug:
        logger.info(
            f"[PIPELINE][INGEST][extract] doc_id={document_id} pages={result.page_count} "
            f"page_texts={len(result.page_texts)} chars={len(result.full_text)}"
        )
    n_chunks = await chunking.index_pages(session, document_id, result.page_texts)
    if settings.pipeline_debug:
        logger.info(f"[PIPELINE][INGEST][index] doc_id={document_id} chunks={n_chunks}")
    label = await classifier.classify(doc.title, result.full_text)
    if settings.pipeline_debug:
        logger.info(f"[PIPELINE][INGEST][classify] doc_id={document_id} type={label.value}")
    await repository.update_document(
        session,
        document_id,
        processing_status=ProcessingStatus.completed.value,
        full_text=result.full_text,
        page_count=result.page_count,
        document_type=label.value,
        processed_date=datetime.now(timezone.utc),
        error_message=None,
    )
    if settings.pipeline_debug:
        logger.info(f"[PIPELINE][INGEST][done] doc_id={document_id} status=completed")


async def _reset(session: AsyncSession, document_id: int) -> None:
    if await repository.get_document(session, document_id) is None:
        return
    await repository.delete_pages_and_chunks(session, document_id)
    await repository.update_document(
        session,
        document_id,
        processing_status=ProcessingStatus.pending.value,
        full_text=None,
        ai_summary=None,
        key_topics=None,
        sentiment=None,
        error_message=None,
    )


async def run_pipeline(document_id: int, reset: bool = False) -> None:
    """Process one document; failures end in ``failed`` with the captured message, never re-raised.

    With ``reset`` the derived fields are cleared first, inside the same lock hold.
    """
    async with runner.hold(document_id):
        async with SessionLocal() as session:
            try:
                if reset:
                    await _reset(session, document_id)
                await _process(session, document_id)
            except Exception as e:
                message = str(e) or type(e).__name__
                logger.exception(f"Processing failed doc {document_id}: {message}")
                if settings.pipeline_debug:
                    logger.error(f"[PIPELINE][INGEST][error] doc_id={document_id} error={message}")
                await session.rollback()
                await repository.update_document(
                    session,
                    document_id,
                    processing_status=ProcessingStatus.failed.value,
                    error_message=message,
                )


async def reprocess_document(session: AsyncSession, document_id: int) -> int:
    if await repository.get_document(session, document_id) is None:
        raise NotFoundError("Document not found")
    if settings.pipeline_debug:
        logger.info(f"[PIPELINE][REPROCESS] doc_id={document_id}")
    # the reset waits for any in-flight run inside the scheduled task, not in the request
    await _trigger(document_id, reset=True)
    return document_id


async def document_status(session: AsyncSession, document_id: int) -> Dict[str, Optional[str]]:
    doc = await repository.get_document(session, document_id)
    if doc is None:
        raise NotFoundError("Document not found")
    return {"processing_status": doc.processing_status, "error_message": doc.error_message}


async def delete_document(session: AsyncSession, document_id: int) -> None:
    doc = await repository.get_document(session, document_id)
    if doc is None:
        raise NotFoundError("Document not found")
    async with runner.hold(document_id):
        try:
            await asyncio.to_thread(get_object_store().delete, doc.file_path)
        except Exception as e:
            logger.warning(f"Blob delete failed doc {document_id} path={doc.file_path}: {e}")
        await repository.delete_document(session, document_id)
