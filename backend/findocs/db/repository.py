"""Async data-access helpers over the ORM models.

Every function takes the caller's ``AsyncSession``; functions that write
commit before returning so background runs and request handlers observe each
step independently.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import select, delete, func, or_, and_

from findocs.db.models import Document, DocumentPage, Chunk, QaHistory, ProcessingStatus
from sqlalchemy.ext.asyncio import AsyncSession


def like_pattern(text: str) -> str:
    """Substring LIKE pattern with `%`, `_` and the escape character taken literally."""
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


async def create_document(session: AsyncSession, **fields: Any) -> Document:
    doc = Document(**fields)
    session.add(doc)
    await session.commit()
    await session.refresh(doc)
    return doc


async def get_document(session: AsyncSession, document_id: int) -> Optional[Document]:
    # pipeline runs write through their own sessions; always read the current row
    return await session.get(Document, document_id, populate_existing=True)


async def update_document(session: AsyncSession, document_id: int, **fields: Any) -> Optional[Document]:
    doc = await get_document(session, document_id)
    if doc is None:
        return None
    for key, value in fields.items():
        setattr(doc, key, value)
    await session.commit()
    await session.refresh(doc)
    return doc


async def delete_document(session: AsyncSession, document_id: int) -> None:
    await session.execute(delete(Document).where(Document.id == document_id))
    await session.commit()


async def list_documents(
    session: AsyncSession,
    doc_type: Optional[str] = None,
    status: Optional[str] = None,
    search: Optional[str] = None,
    limit: Optional[int] = None,
) -> Sequence[Document]:
    conditions = []
    if doc_type and doc_type != "all":
        conditions.append(Document.document_type == doc_type)
    if status and status != "all":
        conditions.append(Document.processing_status == status)
    if search:
        pattern = like_pattern(search)
        conditions.append(or_(
            Document.title.ilike(pattern, escape="\\"),
            Document.original_filename.ilike(pattern, escape="\\"),
        ))
    stmt = select(Document)
    if conditions:
        stmt = stmt.where(and_(*conditions))
    stmt = stmt.order_by(Document.upload_date.desc(), Document.id.desc())
    if limit:
        stmt = stmt.limit(limit)
    res = await session.execute(stmt)
    return res.scalars().all()


async def document_stats(session: AsyncSession) -> Dict[str, Any]:
    res = await session.execute(
        select(Document.processing_status, func.count(Document.id)).group_by(Document.processing_status)
    )
    by_status = {status: count for status, count in res.all()}
    recent = await list_documents(session, limit=5)
    return {
        "total_documents": sum(by_status.values()),
        "processing_documents": by_status.get(ProcessingStatus.processing.value, 0),
        "completed_documents": by_status.get(ProcessingStatus.completed.value, 0),
        "failed_documents": by_status.get(ProcessingStatus.failed.value, 0),
        "recent_documents": list(recent),
    }


async def get_pages(session: AsyncSession, document_id: int) -> Sequence[DocumentPage]:
    res = await session.execute(
        select(DocumentPage).where(DocumentPage.document_id == document_id).order_by(DocumentPage.page_number)
    )
    return res.scalars().all()


async def get_page(session: AsyncSession, document_id: int, page_number: int) -> Optional[DocumentPage]:
    res = await session.execute(
        select(DocumentPage).where(
            DocumentPage.document_id == document_id, DocumentPage.page_number == page_number
        )
    )
    return res.scalar_one_or_none()


async def get_chunks(session: AsyncSession, document_id: int) -> Sequence[Chunk]:
    res = await session.execute(
        select(Chunk).where(Chunk.document_id == document_id).order_by(Chunk.chunk_index)
    )
    return res.scalars().all()


async def delete_pages_and_chunks(session: AsyncSession, document_id: int) -> None:
    await session.execute(delete(Chunk).where(Chunk.document_id == document_id))
    await session.execute(delete(DocumentPage).where(DocumentPage.document_id == document_id))
    await session.commit()


async def get_documents_by_id(session: AsyncSession, document_ids: List[int]) -> Dict[int, Document]:
    if not document_ids:
        return {}
    res = await session.execute(select(Document).where(Document.id.in_(set(document_ids))))
    return {d.id: d for d in res.scalars().all()}


async def create_qa_history(
    session: AsyncSession, question: str, answer: str, citations: List[dict], document_ids: List[int]
) -> QaHistory:
    row = QaHistory(question=question, answer=answer, citations=citations, document_ids=document_ids)
    session.add(row)
    await session.commit()
    await session.refresh(row)
    return row


async def get_qa_history(session: AsyncSession, limit: int = 20) -> Sequence[QaHistory]:
    res = await session.execute(
        select(QaHistory).order_by(QaHistory.created_at.desc(), QaHistory.id.desc()).limit(limit)
    )
    return res.scalars().all()
