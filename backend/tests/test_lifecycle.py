import asyncio

import pytest

from findocs.core.config import get_settings
from findocs.core.errors import NotFoundError, ValidationError
from findocs.db import repository
from findocs.db.models import DocumentType
from findocs.services import tasks

PDF = "application/pdf"


async def _counts(db, document_id):
    return len(await repository.get_pages(db, document_id)), len(await repository.get_chunks(db, document_id))


async def test_pdf_upload_completes(db, fake_llm, make_pdf):
    fake_llm.label = "quarterly_earnings"
    doc = await tasks.submit_document(db, make_pdf(["Revenue grew 12% in Q3"]), "Q3 Report.pdf", PDF)
    assert doc.title == "Q3 Report"
    assert doc.original_filename == "Q3 Report.pdf"
    assert doc.file_path.startswith("/objects/")
    assert doc.processing_status == "completed"
    assert doc.page_count == 1
    assert doc.document_type == "quarterly_earnings"
    assert doc.processed_date is not None
    assert doc.error_message is None
    assert "Revenue grew 12% in Q3" in doc.full_text
    assert await _counts(db, doc.id) == (1, 1)


async def test_placeholder_types_still_complete(db, fake_llm):
    doc = await tasks.submit_document(db, b"\x89PNG....", "chart.png", "image/png")
    assert doc.processing_status == "completed"
    (page,) = await repository.get_pages(db, doc.id)
    assert page.page_text == "Image OCR not yet implemented."
    assert doc.document_type == "other"


async def test_content_type_parameters_are_ignored(db, make_pdf):
    doc = await tasks.submit_document(db, make_pdf(["x"]), "a.pdf", "application/pdf; charset=binary")
    assert doc.file_type == PDF


async def test_rejected_type_writes_nothing(db, object_store):
    with pytest.raises(ValidationError):
        await tasks.submit_document(db, b"hello", "notes.txt", "text/plain")
    assert list(object_store.root.iterdir()) == []
    assert await repository.list_documents(db) == []


async def test_oversized_upload_writes_nothing(db, object_store, monkeypatch, make_pdf):
    monkeypatch.setattr(get_settings(), "max_upload_bytes", 10)
    with pytest.raises(ValidationError):
        await tasks.submit_document(db, make_pdf(["Revenue"]), "big.pdf", PDF)
    assert list(object_store.root.iterdir()) == []


async def test_reprocess_leaves_no_duplicates(db, make_pdf):
    doc = await tasks.submit_document(db, make_pdf(["Page one text", "Page two text"]), "deck.pdf", PDF)
    await repository.update_document(db, doc.id, ai_summary="old", key_topics=["x"], sentiment="mixed")
    await tasks.reprocess_document(db, doc.id)
    await tasks.reprocess_document(db, doc.id)
    await db.refresh(doc)
    assert doc.processing_status == "completed"
    assert doc.ai_summary is None and doc.key_topics is None and doc.sentiment is None
    assert await _counts(db, doc.id) == (2, 2)


async def test_missing_blob_marks_failed(db, object_store, make_pdf):
    doc = await tasks.submit_document(db, make_pdf(["Revenue"]), "r.pdf", PDF)
    object_store.delete(doc.file_path)
    await tasks.reprocess_document(db, doc.id)
    status = await tasks.document_status(db, doc.id)
    assert status["processing_status"] == "failed"
    assert doc.file_path in status["error_message"]
    assert await _counts(db, doc.id) == (0, 0)


async def test_failure_without_message_uses_exception_name(db, monkeypatch, make_pdf):
    doc = await tasks.submit_document(db, make_pdf(["Revenue"]), "r.pdf", PDF)

    class Boom(Exception):
        pass

    def explode(data, content_type):
        raise Boom()

    monkeypatch.setattr(tasks.parsing, "extract", explode)
    await tasks.reprocess_document(db, doc.id)
    status = await tasks.document_status(db, doc.id)
    assert status == {"processing_status": "failed", "error_message": "Boom"}


async def test_failed_document_recovers_on_reprocess(db, monkeypatch, make_pdf):
    doc = await tasks.submit_document(db, make_pdf(["Revenue"]), "r.pdf", PDF)
    original = tasks.parsing.extract
    monkeypatch.setattr(tasks.parsing, "extract", lambda data, ct: 1 / 0)
    await tasks.reprocess_document(db, doc.id)
    assert (await tasks.document_status(db, doc.id))["processing_status"] == "failed"
    monkeypatch.setattr(tasks.parsing, "extract", original)
    await tasks.reprocess_document(db, doc.id)
    assert await tasks.document_status(db, doc.id) == {"processing_status": "completed", "error_message": None}


async def test_background_run_and_concurrent_reprocess(db, monkeypatch, make_pdf):
    monkeypatch.setattr(get_settings(), "sync_ingest", False)
    doc = await tasks.submit_document(db, make_pdf(["One", "Two", "Three"]), "bg.pdf", PDF)
    assert doc.processing_status == "pending"
    # scheduled run and reprocess contend for the same document
    await tasks.reprocess_document(db, doc.id)
    await tasks.runner.drain()
    await db.refresh(doc)
    assert doc.processing_status == "completed"
    assert await _counts(db, doc.id) == (3, 3)


async def test_reprocess_returns_while_a_run_is_in_flight(db, monkeypatch, make_pdf):
    monkeypatch.setattr(get_settings(), "sync_ingest", False)
    entered = asyncio.Event()
    release = asyncio.Event()

    async def parked_classify(title, text):
        entered.set()
        await release.wait()
        return DocumentType.annual_report

    monkeypatch.setattr(tasks.classifier, "classify", parked_classify)
    doc = await tasks.submit_document(db, make_pdf(["One", "Two"]), "slow.pdf", PDF)
    assert (doc.processing_status, doc.error_message) == ("pending", None)

    await asyncio.wait_for(entered.wait(), timeout=5)
    assert await tasks.document_status(db, doc.id) == {"processing_status": "processing", "error_message": None}

    await asyncio.wait_for(tasks.reprocess_document(db, doc.id), timeout=1)
    # the reset is queued behind the in-flight run
    assert await tasks.document_status(db, doc.id) == {"processing_status": "processing", "error_message": None}
    assert tasks.runner.pending == 2

    release.set()
    await tasks.runner.drain()
    assert await tasks.document_status(db, doc.id) == {"processing_status": "completed", "error_message": None}
    assert await _counts(db, doc.id) == (2, 2)
    assert tasks.runner.tracked_locks == 0


async def test_locks_are_released_after_runs(db, make_pdf):
    first = await tasks.submit_document(db, make_pdf(["One"]), "a.pdf", PDF)
    await tasks.submit_document(db, make_pdf(["Two"]), "b.pdf", PDF)
    await tasks.reprocess_document(db, first.id)
    assert tasks.runner.tracked_locks == 0
    await tasks.delete_document(db, first.id)
    assert tasks.runner.tracked_locks == 0


async def test_delete_removes_rows_and_blob(db, object_store, make_pdf):
    doc = await tasks.submit_document(db, make_pdf(["Revenue"]), "r.pdf", PDF)
    await tasks.delete_document(db, doc.id)
    assert list(object_store.root.iterdir()) == []
    assert await _counts(db, doc.id) == (0, 0)
    with pytest.raises(NotFoundError):
        await tasks.document_status(db, doc.id)


async def test_unknown_document(db):
    with pytest.raises(NotFoundError):
        await tasks.reprocess_document(db, 12345)
    with pytest.raises(NotFoundError):
        await tasks.delete_document(db, 12345)


def test_title_from_filename():
    assert tasks.title_from_filename("Q3 Report.pdf") == "Q3 Report"
    assert tasks.title_from_filename("archive.tar.gz") == "archive.tar"
    assert tasks.title_from_filename("README") == "README"
