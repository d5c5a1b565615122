import enum

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from findocs.db.session import Base


class ProcessingStatus(str, enum.Enum):
    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"


class DocumentType(str, enum.Enum):
    annual_report = "annual_report"
    quarterly_earnings = "quarterly_earnings"
    concall_transcript = "concall_transcript"
    industry_report = "industry_report"
    research_note = "research_note"
    investor_presentation = "investor_presentation"
    regulatory_filing = "regulatory_filing"
    other = "other"


class Document(Base):
    __tablename__ = "documents"
    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False, index=True)
    original_filename = Column(String, nullable=False)
    file_path = Column(String, nullable=False)
    file_size_bytes = Column(Integer, default=0)
    file_type = Column(String, nullable=False, index=True)
    processing_status = Column(String, default=ProcessingStatus.pending.value, nullable=False, index=True)
    page_count = Column(Integer, nullable=True)
    full_text = Column(Text, nullable=True)
    document_type = Column(String, nullable=True, index=True)
    ai_summary = Column(Text, nullable=True)
    key_topics = Column(JSON, nullable=True)
    sentiment = Column(String, nullable=True)
    error_message = Column(Text, nullable=True)
    upload_date = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    processed_date = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    pages = relationship("DocumentPage", back_populates="document", cascade="all,delete-orphan", passive_deletes=True)
    chunks = relationship("Chunk", back_populates="document", cascade="all,delete-orphan", passive_deletes=True)


class DocumentPage(Base):
    __tablename__ = "document_pages"
    __table_args__ = (UniqueConstraint("document_id", "page_number", name="uq_document_page"),)
    id = Column(Integer, primary_key=True, index=True)
    document_id = Column(Integer, ForeignKey("documents.id", ondelete="CASCADE"), index=True, nullable=False)
    page_number = Column(Integer, nullable=False)
    page_text = Column(Text, nullable=True)
    document = relationship("Document", back_populates="pages")


class Chunk(Base):
    """Searchable text unit. One per non-empty page; no vector is stored."""
    __tablename__ = "document_chunks"
    __table_args__ = (UniqueConstraint("document_id", "chunk_index", name="uq_document_chunk"),)
    id = Column(Integer, primary_key=True, index=True)
    document_id = Column(Integer, ForeignKey("documents.id", ondelete="CASCADE"), index=True, nullable=False)
    page_number = Column(Integer, nullable=False)
    chunk_index = Column(Integer, nullable=False)
    chunk_text = Column(Text, nullable=False)
    token_count = Column(Integer, default=0)
    document = relationship("Document", back_populates="chunks")


class QaHistory(Base):
    __tablename__ = "qa_history"
    id = Column(Integer, primary_key=True, index=True)
    question = Column(Text, nullable=False)
    answer = Column(Text, nullable=False)
    citations = Column(JSON, nullable=False, default=list)
    # Weak references: rows are kept when a listed document is deleted
    document_ids = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
