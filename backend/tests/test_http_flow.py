import json

from fastapi.testclient import TestClient

from findocs.core.config import get_settings
from findocs.db.session import Base, engine

PDF = "application/pdf"


def _upload(client, make_pdf, pages, filename="Q3 Report.pdf", content_type=PDF):
    files = {"file": (filename, make_pdf(pages), content_type)}
    return client.post("/api/documents/upload", files=files)


async def test_upload_round_trip(client, fake_llm, make_pdf):
    fake_llm.label = "quarterly_earnings"
    up = _upload(client, make_pdf, ["Revenue grew 12% in Q3"])
    assert up.status_code == 201, up.text
    body = up.json()
    assert body["title"] == "Q3 Report"
    assert body["processingStatus"] == "completed"
    assert body["pageCount"] == 1
    assert body["documentType"] == "quarterly_earnings"
    doc_id = body["id"]

    status = client.get(f"/api/documents/{doc_id}/status")
    assert status.json() == {"processingStatus": "completed", "errorMessage": None}

    detail = client.get(f"/api/documents/{doc_id}").json()
    assert len(detail["pages"]) == 1
    assert detail["pages"][0]["pageNumber"] == 1
    assert "Revenue grew" in detail["pages"][0]["pageText"]

    listing = client.get("/api/documents", params={"type": "quarterly_earnings", "status": "all"}).json()
    assert listing["total"] == 1
    assert listing["documents"][0]["id"] == doc_id
    assert client.get("/api/documents", params={"type": "annual_report"}).json()["total"] == 0
    assert client.get("/api/documents", params={"search": "q3"}).json()["total"] == 1


async def test_download_and_view_stream_original_bytes(client, make_pdf):
    data = make_pdf(["Revenue"])
    up = client.post("/api/documents/upload", files={"file": ("r.pdf", data, PDF)})
    doc_id = up.json()["id"]
    dl = client.get(f"/api/documents/{doc_id}/download")
    assert dl.status_code == 200
    assert dl.content == data
    assert dl.headers["content-disposition"] == 'attachment; filename="r.pdf"'
    view = client.get(f"/api/documents/{doc_id}/view")
    assert view.headers["content-type"].startswith(PDF)
    assert view.content == data


async def test_rejected_upload(client):
    r = client.post("/api/documents/upload", files={"file": ("notes.txt", b"hi", "text/plain")})
    assert r.status_code == 400
    assert "Invalid file type" in r.json()["error"]
    r = client.post("/api/documents/upload")
    assert r.status_code == 400
    assert r.json() == {"error": "No file uploaded"}


async def test_not_found_shape(client):
    r = client.get("/api/documents/999")
    assert r.status_code == 404
    assert r.json() == {"error": "Document not found"}
    assert client.delete("/api/documents/999").status_code == 404
    assert client.post("/api/documents/999/reprocess").status_code == 404


async def test_search_and_ask(client, fake_llm, make_pdf):
    doc_id = _upload(client, make_pdf, ["Operating margin expanded to 21%"]).json()["id"]

    r = client.post("/api/search", json={"query": "operating margins"})
    assert r.status_code == 200
    results = r.json()["results"]
    assert results[0]["documentId"] == doc_id
    assert results[0]["documentTitle"] == "Q3 Report"
    assert results[0]["pageNumber"] == 1

    fake_llm.queue(json.dumps({
        "answer": "Margin expanded to 21% [Q3 Report, Page 1].",
        "citations": [{"documentId": doc_id, "documentTitle": "Q3 Report", "pageNumber": 1, "excerpt": "21%"}],
        "insufficientEvidence": False,
    }))
    r = client.post("/api/qa/ask", json={"question": "What happened to operating margin?"})
    assert r.status_code == 200
    answer = r.json()
    assert answer["insufficientEvidence"] is False
    assert answer["citations"][0] == {
        "documentId": doc_id, "documentTitle": "Q3 Report", "pageNumber": 1, "excerpt": "21%",
    }

    history = client.get("/api/qa/history").json()
    assert len(history) == 1
    assert history[0]["documentIds"] == [doc_id]
    assert history[0]["citations"][0]["documentTitle"] == "Q3 Report"

    fake_llm.queue('{"answer": "21% [Page 1]", "citations": [{"pageNumber": 1, "excerpt": "21%"}]}')
    r = client.post(f"/api/documents/{doc_id}/ask", json={"question": "Margin?"})
    assert r.json() == {"answer": "21% [Page 1]", "citations": [{"pageNumber": 1, "excerpt": "21%"}]}


async def test_missing_fields_are_bad_requests(client):
    assert client.post("/api/search", json={}).json() == {"error": "Query is required"}
    assert client.post("/api/qa/ask", json={"question": "  "}).status_code == 400
    r = client.post("/api/documents/1/page-insight", json={})
    assert r.status_code == 400
    assert "pageNumber" in r.json()["error"]


async def test_ask_with_empty_corpus(client, fake_llm):
    r = client.post("/api/qa/ask", json={"question": "What was revenue?"})
    assert r.status_code == 200
    assert r.json()["insufficientEvidence"] is True
    assert r.json()["citations"] == []
    assert fake_llm.calls == []


async def test_summary_page_insight_and_stats(client, fake_llm, make_pdf):
    doc_id = _upload(client, make_pdf, ["Revenue grew 12% in Q3"]).json()["id"]
    fake_llm.queue(json.dumps({
        "summary": "Good quarter.", "keyThemes": ["growth"], "risks": [], "opportunities": [], "sentiment": "positive",
    }))
    summary = client.post(f"/api/documents/{doc_id}/summary").json()
    assert summary["keyThemes"] == ["growth"]
    detail = client.get(f"/api/documents/{doc_id}").json()
    assert detail["aiSummary"] == "Good quarter."
    assert detail["keyTopics"] == ["growth"]

    fake_llm.queue('{"summary": "Revenue up.", "keyPoints": ["12% growth"]}')
    insight = client.post(f"/api/documents/{doc_id}/page-insight", json={"pageNumber": 1}).json()
    assert insight == {"summary": "Revenue up.", "keyPoints": ["12% growth"]}

    stats = client.get("/api/dashboard/stats").json()
    assert stats["totalDocuments"] == 1
    assert stats["completedDocuments"] == 1
    assert stats["failedDocuments"] == 0
    assert stats["recentDocuments"][0]["id"] == doc_id


async def test_reprocess_and_delete(client, object_store, make_pdf):
    doc_id = _upload(client, make_pdf, ["Revenue"]).json()["id"]
    r = client.post(f"/api/documents/{doc_id}/reprocess")
    assert r.json() == {"message": "Document reprocessing started", "documentId": doc_id}
    assert len(client.get(f"/api/documents/{doc_id}").json()["pages"]) == 1
    r = client.delete(f"/api/documents/{doc_id}")
    assert r.status_code == 204
    assert client.get(f"/api/documents/{doc_id}").status_code == 404
    assert list(object_store.root.iterdir()) == []


async def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    data = r.json()
    assert data["status"] == "ok"
    assert data["components"]["generation"]["configured"] is True


async def test_oversized_upload_is_rejected_before_storage(client, object_store, monkeypatch, make_pdf):
    monkeypatch.setattr(get_settings(), "max_upload_bytes", 10)
    r = _upload(client, make_pdf, ["Revenue grew 12% in Q3"], filename="big.pdf")
    assert r.status_code == 400
    assert r.json()["error"].startswith("File too large")
    assert list(object_store.root.iterdir()) == []


async def test_lifespan_creates_tables(db):
    from findocs.main import app
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    with TestClient(app) as client:
        assert client.get("/api/documents").json() == {"documents": [], "total": 0}
