import math
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from findocs.core.config import get_settings
from findocs.db import models

settings = get_settings()


@dataclass
class PageChunk:
    page_number: int
    page_text: str
    chunk_index: int
    chunk_text: str
    token_count: int


def build_chunks(page_texts: List[str], max_chars: Optional[int] = None, chars_per_token: Optional[int] = None) -> List[PageChunk]:
    """One chunk per non-blank page, in extraction order.

    Blank pages yield neither a page nor a chunk. Page numbers keep the
    extraction position (1-based) and chunk indexes the 0-based position, so
    both may skip values.
    """
    max_chars = max_chars or settings.chunk_max_chars
    chars_per_token = chars_per_token or settings.chars_per_token
    results: List[PageChunk] = []
    for position, text in enumerate(page_texts):
        if not text or not text.strip():
            continue
        results.append(PageChunk(
            page_number=position + 1,
            page_text=text,
            chunk_index=position,
            chunk_text=text[:max_chars],
            token_count=math.ceil(len(text) / chars_per_token),
        ))
    return results


async def index_pages(session: AsyncSession, document_id: int, page_texts: List[str]) -> int:
    """Persist page and chunk rows for a document; returns the number of chunks written."""
    chunks = build_chunks(page_texts)
    for ch in chunks:
        session.add(models.DocumentPage(document_id=document_id, page_number=ch.page_number, page_text=ch.page_text))
        session.add(models.Chunk(
            document_id=document_id,
            page_number=ch.page_number,
            chunk_index=ch.chunk_index,
            chunk_text=ch.chunk_text,
            token_count=ch.token_count,
        ))
    await session.commit()
    return len(chunks)
