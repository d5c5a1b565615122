import time
from typing import Any, Dict, List, Optional

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from findocs.core.config import get_settings
from findocs.core.errors import NotFoundError, ValidationError, UpstreamServiceError, StructuredOutputError
from findocs.db import repository
from findocs.db.models import ProcessingStatus
from findocs.services import llm, search
from findocs.utils.json_extract import extract_json_object, require_json_object

settings = get_settings()

NO_DOCUMENT_TEXT = "No text content available in this document to answer your question."
NO_DOCUMENTS = "No documents have been uploaded yet. Please upload some documents first."
NO_EXTRACTABLE_TEXT = "I cannot answer this question - the documents appear to have no extractable text content."
NO_PAGE_TEXT = "No text content available for this page."
PAGE_INSIGHT_UNAVAILABLE = "Page insight unavailable (model error)."
CONTEXT_SEPARATOR = "\n\n---\n\n"
SENTIMENTS = ("positive", "negative", "neutral", "mixed")

DOCUMENT_QA_PROMPT = """Answer the following question using ONLY the provided document excerpts.
Cite sources inline like [Page X].
If you cannot answer from the provided content, say so.

Document: {title}

Content:
{context}

Question: {question}

Respond with JSON:
{{
  "answer": "your answer with [Page X] citations inline",
  "citations": [
    {{"pageNumber": 1, "excerpt": "relevant quote from page"}}
  ]
}}"""

CORPUS_QA_PROMPT = """Answer the following question using ONLY the provided document excerpts.
Cite sources inline like [Document Title, Page X].
If you cannot answer from the provided excerpts, say: "I cannot answer this based on the uploaded documents."

Excerpts:
{context}

Question: {question}

Respond with JSON:
{{
  "answer": "your answer with citations inline",
  "citations": [
    {{"documentId": 1, "documentTitle": "title", "pageNumber": 1, "excerpt": "relevant quote"}}
  ],
  "insufficientEvidence": false
}}"""

SUMMARY_PROMPT = """Analyze this financial document and provide a comprehensive summary.

Document content:
{content}

Please provide:
1. A 3-paragraph executive summary
2. 5-7 key themes (as a JSON array of strings)
3. Top 3 risks (as a JSON array of strings)
4. Top 3 opportunities (as a JSON array of strings)
5. Overall sentiment (one of: positive, negative, neutral, mixed)

Return your response as JSON with this structure:
{{
  "summary": "executive summary paragraphs",
  "keyThemes": ["theme1", "theme2", ...],
  "risks": ["risk1", "risk2", "risk3"],
  "opportunities": ["opp1", "opp2", "opp3"],
  "sentiment": "positive|negative|neutral|mixed"
}}"""

PAGE_INSIGHT_PROMPT = """Analyze this page from a financial document and provide insights.

Page content:
{content}

Return JSON with:
{{
  "summary": "brief 2-3 sentence summary of the page",
  "keyPoints": ["point1", "point2", "point3"]
}}"""


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _as_flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return value is True


def _str_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v is not None]


def _answer_text(parsed: Optional[Dict[str, Any]], raw: str) -> str:
    if parsed and isinstance(parsed.get("answer"), str):
        return parsed["answer"]
    return raw.strip()


def normalize_citations(raw: Any, titles: Optional[Dict[int, str]] = None) -> List[Dict[str, Any]]:
    """Coerce model-provided citations into snake_case dicts.

    With ``titles`` (corpus mode) each citation also carries its document id
    and title; a missing title is filled from the consulted documents.
    """
    if not isinstance(raw, list):
        return []
    out: List[Dict[str, Any]] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        citation: Dict[str, Any] = {
            "page_number": _as_int(item.get("pageNumber", item.get("page_number"))),
            "excerpt": str(item.get("excerpt") or ""),
        }
        if titles is not None:
            doc_id = _as_int(item.get("documentId", item.get("document_id")))
            title = item.get("documentTitle", item.get("document_title"))
            citation["document_id"] = doc_id
            citation["document_title"] = str(title) if title else titles.get(doc_id, "Unknown Document")
        out.append(citation)
    return out


def build_context(blocks: List[str]) -> str:
    return CONTEXT_SEPARATOR.join(blocks)[:settings.context_char_limit]


async def ask_document(session: AsyncSession, document_id: int, question: str) -> Dict[str, Any]:
    question = (question or "").strip()
    if not question:
        raise ValidationError("Question is required")
    doc = await repository.get_document(session, document_id)
    if doc is None:
        raise NotFoundError("Document not found")
    pages = [p for p in await repository.get_pages(session, document_id) if p.page_text]
    if not pages:
        return {"answer": NO_DOCUMENT_TEXT, "citations": []}
    context = build_context([f"[Page {p.page_number}]\n{p.page_text}" for p in pages])
    raw = await llm.generate_text(
        DOCUMENT_QA_PROMPT.format(title=doc.title, context=context, question=question),
        max_tokens=2048,
    )
    parsed = extract_json_object(raw)
    if parsed is None:
        return {"answer": raw, "citations": []}
    return {"answer": _answer_text(parsed, raw), "citations": normalize_citations(parsed.get("citations"))}


async def _fallback_sources(session: AsyncSession) -> Optional[List[Dict[str, Any]]]:
    """Page texts of the most recent documents; ``None`` when no documents exist at all."""
    docs = await repository.list_documents(session, limit=settings.fallback_document_limit)
    if not docs:
        return None
    sources: List[Dict[str, Any]] = []
    for doc in docs:
        pages = await repository.get_pages(session, doc.id)
        for page in pages:
            if page.page_text:
                sources.append({
                    "document_id": doc.id,
                    "document_title": doc.title,
                    "page_number": page.page_number,
                    "chunk_text": page.page_text,
                })
        if not pages and doc.full_text:
            sources.append({
                "document_id": doc.id,
                "document_title": doc.title,
                "page_number": 1,
                "chunk_text": doc.full_text,
            })
    return sources


async def ask_corpus(session: AsyncSession, question: str) -> Dict[str, Any]:
    start = time.time()
    question = (question or "").strip()
    if not question:
        raise ValidationError("Question is required")
    hits = await search.search_chunks(session, question, settings.ask_chunk_limit)
    mode = "search"
    if hits:
        docs = await repository.get_documents_by_id(session, [h["document_id"] for h in hits])
        sources = [
            {**h, "document_title": docs[h["document_id"]].title if h["document_id"] in docs else "Unknown Document"}
            for h in hits
        ]
    else:
        mode = "fallback"
        sources = await _fallback_sources(session)
        if sources is None:
            return {"answer": NO_DOCUMENTS, "citations": [], "insufficient_evidence": True}
        if not sources:
            return {"answer": NO_EXTRACTABLE_TEXT, "citations": [], "insufficient_evidence": True}
    context = build_context([
        f"[Source {i}: {s['document_title']}, Page {s['page_number'] or 'N/A'}]\n{s['chunk_text']}"
        for i, s in enumerate(sources, start=1)
    ])
    if settings.pipeline_debug:
        logger.info(f"[PIPELINE][ASK][context] mode={mode} sources={len(sources)} context_chars={len(context)}")
    raw = await llm.generate_text(CORPUS_QA_PROMPT.format(context=context, question=question), max_tokens=2048)
    parsed = extract_json_object(raw)
    titles = {s["document_id"]: s["document_title"] for s in sources}
    if parsed is None:
        response = {"answer": raw, "citations": [], "insufficient_evidence": False}
    else:
        response = {
            "answer": _answer_text(parsed, raw),
            "citations": normalize_citations(parsed.get("citations"), titles),
            "insufficient_evidence": _as_flag(parsed.get("insufficientEvidence")),
        }
    document_ids = list(dict.fromkeys(s["document_id"] for s in sources))
    await repository.create_qa_history(
        session,
        question=question,
        answer=response["answer"],
        citations=response["citations"],
        document_ids=document_ids,
    )
    if settings.pipeline_debug:
        logger.info(
            f"[PIPELINE][ASK][done] mode={mode} citations={len(response['citations'])} "
            f"documents={len(document_ids)} latency_ms={int((time.time() - start) * 1000)}"
        )
    return response


async def summarize_document(session: AsyncSession, document_id: int) -> Dict[str, Any]:
    doc = await repository.get_document(session, document_id)
    if doc is None:
        raise NotFoundError("Document not found")
    if doc.processing_status != ProcessingStatus.completed.value:
        raise ValidationError("Document is not fully processed yet")
    pages = await repository.get_pages(session, document_id)
    full_text = "\n\n".join(p.page_text for p in pages if p.page_text)
    if not full_text:
        raise ValidationError("No text content available")
    raw = await llm.generate_text(
        SUMMARY_PROMPT.format(content=full_text[:settings.context_char_limit]), max_tokens=2048
    )
    try:
        data = require_json_object(raw)
    except StructuredOutputError as e:
        logger.warning(f"Summary response for doc {document_id} not parseable: {e}")
        raise UpstreamServiceError("Could not parse summary response") from e
    sentiment = str(data.get("sentiment") or "").strip().lower()
    result = {
        "summary": str(data.get("summary") or ""),
        "key_themes": _str_list(data.get("keyThemes")),
        "risks": _str_list(data.get("risks")),
        "opportunities": _str_list(data.get("opportunities")),
        "sentiment": sentiment if sentiment in SENTIMENTS else None,
    }
    await repository.update_document(
        session,
        document_id,
        ai_summary=result["summary"],
        key_topics=result["key_themes"],
        sentiment=result["sentiment"],
    )
    return result


async def page_insight(session: AsyncSession, document_id: int, page_number: int) -> Dict[str, Any]:
    if await repository.get_document(session, document_id) is None:
        raise NotFoundError("Document not found")
    page = await repository.get_page(session, document_id, page_number)
    if page is None or not page.page_text:
        return {"summary": NO_PAGE_TEXT, "key_points": []}
    try:
        raw = await llm.generate_text(PAGE_INSIGHT_PROMPT.format(content=page.page_text), max_tokens=1024)
    except UpstreamServiceError as e:
        logger.warning(f"Page insight failed doc={document_id} page={page_number}: {e}")
        return {"summary": PAGE_INSIGHT_UNAVAILABLE, "key_points": []}
    parsed = extract_json_object(raw)
    if parsed is None:
        return {"summary": raw, "key_points": []}
    summary = parsed.get("summary")
    return {
        "summary": summary if isinstance(summary, str) else raw,
        "key_points": _str_list(parsed.get("keyPoints")),
    }


async def recent_history(session: AsyncSession, limit: Optional[int] = None):
    return await repository.get_qa_history(session, limit or settings.qa_history_limit)
