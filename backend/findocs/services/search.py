"""Corpus search over indexed chunks.

Tier 1 is a language-aware full-text match over chunk text (PostgreSQL
``tsvector`` when available, an equivalent in-process match otherwise), with a
plain substring match on chunk text when the full-text match finds nothing.
Tier 2 runs only when tier 1 is empty and matches document titles/filenames.
"""
from __future__ import annotations

import collections
import math
import re
from typing import Dict, List, Optional

from loguru import logger
from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from findocs.core.config import get_settings
from findocs.core.errors import ValidationError
from findocs.db import repository
from findocs.db.repository import like_pattern
from findocs.db.models import Chunk
from findocs.db.session import is_postgres

settings = get_settings()

_WORD_RE = re.compile(r"[A-Za-z0-9_]{2,}")

STOP_WORDS = frozenset("""
a about above after again against all am an and any are as at be because been before being below between
both but by can could did do does doing down during each few for from further had has have having he her
here hers herself him himself his how i if in into is it its itself just me more most my myself no nor not
now of off on once only or other our ours ourselves out over own same she should so some such than that the
their theirs them themselves then there these they this those through to too under until up very was we
were what when where which while who whom why will with would you your yours yourself yourselves
""".split())

# Longest first; stripping only ever removes a suffix so a stem stays a prefix of its word
_SUFFIXES = ("ingly", "edly", "ness", "ies", "ied", "ing", "es", "ed", "ly", "s", "e", "y")
_MIN_STEM = 3


def stem(token: str) -> str:
    while True:
        for suffix in _SUFFIXES:
            if token.endswith(suffix) and len(token) - len(suffix) >= _MIN_STEM:
                if suffix == "s" and token.endswith("ss"):
                    continue
                token = token[:-len(suffix)]
                break
        else:
            return token


def analyze(text: str) -> List[str]:
    """Lower-case, drop English stop words, stem."""
    return [stem(t) for t in _WORD_RE.findall((text or "").lower()) if t not in STOP_WORDS]


def _hit(chunk: Chunk, score: float) -> Dict:
    return {
        "document_id": chunk.document_id,
        "page_number": chunk.page_number,
        "chunk_index": chunk.chunk_index,
        "chunk_text": chunk.chunk_text,
        "score": round(float(score), 6),
    }


async def _fulltext_postgres(session: AsyncSession, query: str, limit: int) -> List[Dict]:
    ts_vector = func.to_tsvector("english", Chunk.chunk_text)
    ts_query = func.plainto_tsquery("english", query)
    rank = func.ts_rank(ts_vector, ts_query).label("score")
    stmt = (
        select(Chunk, rank)
        .where(ts_vector.op("@@")(ts_query))
        .order_by(rank.desc(), Chunk.id)
        .limit(limit)
    )
    res = await session.execute(stmt)
    return [_hit(chunk, score) for chunk, score in res.all()]


async def _fulltext_local(session: AsyncSession, query: str, limit: int) -> List[Dict]:
    terms = sorted(set(analyze(query)))
    if not terms:
        return []
    # Every stem is a prefix of its word, so a LIKE per stem is a superset of the real matches
    stmt = select(Chunk).where(and_(*[Chunk.chunk_text.ilike(like_pattern(t), escape="\\") for t in terms])).order_by(Chunk.id)
    candidates = (await session.execute(stmt)).scalars().all()
    term_freqs = []
    doc_freq: Dict[str, int] = collections.defaultdict(int)
    for chunk in candidates:
        tf = collections.Counter(analyze(chunk.chunk_text))
        if not all(t in tf for t in terms):
            continue
        term_freqs.append((chunk, tf))
        for t in terms:
            doc_freq[t] += 1
    total = len(term_freqs)
    scored = []
    for chunk, tf in term_freqs:
        score = 0.0
        for t in terms:
            idf = math.log((1 + total) / (1 + doc_freq[t])) + 1
            score += tf[t] * idf
        scored.append((score, chunk))
    scored.sort(key=lambda x: (-x[0], x[1].id))
    return [_hit(chunk, score) for score, chunk in scored[:limit]]


async def _substring_chunks(session: AsyncSession, query: str, limit: int) -> List[Dict]:
    stmt = (
        select(Chunk)
        .where(Chunk.chunk_text.ilike(like_pattern(query), escape="\\"))
        .order_by(Chunk.id)
        .limit(limit)
    )
    rows = (await session.execute(stmt)).scalars().all()
    needle = query.lower()
    return [_hit(c, c.chunk_text.lower().count(needle)) for c in rows]


async def search_chunks(session: AsyncSession, query: str, limit: int) -> List[Dict]:
    """Tier 1: full-text match over chunks, then substring match on chunk text."""
    query = (query or "").strip()
    if not query:
        return []
    if is_postgres():
        hits = await _fulltext_postgres(session, query, limit)
    else:
        hits = await _fulltext_local(session, query, limit)
    if not hits:
        hits = await _substring_chunks(session, query, limit)
    if settings.pipeline_debug:
        logger.info(f"[PIPELINE][SEARCH][chunks] query='{query[:120]}' hits={len(hits)} limit={limit}")
    return hits


async def _title_matches(session: AsyncSession, query: str) -> List[Dict]:
    docs = await repository.list_documents(session, search=query, limit=settings.title_match_limit)
    results = []
    for doc in docs:
        pages = await repository.get_pages(session, doc.id)
        first_text = pages[0].page_text if pages else None
        preview = (first_text or "")[:settings.preview_chars] or (doc.full_text or "")[:settings.preview_chars]
        results.append({
            "document_id": doc.id,
            "document_title": doc.title,
            "document_type": doc.document_type,
            "page_number": 1,
            "chunk_text": preview or "No preview available",
            "score": 1.0,
        })
    return results


async def search(session: AsyncSession, query: str, limit: Optional[int] = None) -> List[Dict]:
    query = (query or "").strip()
    if not query:
        raise ValidationError("Query is required")
    limit = limit or settings.search_limit
    hits = await search_chunks(session, query, limit)
    if not hits:
        results = await _title_matches(session, query)
        if settings.pipeline_debug:
            logger.info(f"[PIPELINE][SEARCH][fallback] query='{query[:120]}' documents={len(results)}")
        return results
    docs = await repository.get_documents_by_id(session, [h["document_id"] for h in hits])
    results = []
    for h in hits:
        doc = docs.get(h["document_id"])
        results.append({
            "document_id": h["document_id"],
            "document_title": doc.title if doc else "Unknown",
            "document_type": doc.document_type if doc else None,
            "page_number": h["page_number"],
            "chunk_text": h["chunk_text"],
            "score": h["score"],
        })
    return results
