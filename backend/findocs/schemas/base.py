from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Snake_case in Python, camelCase on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class DocumentOut(CamelModel):
    id: int
    title: str
    original_filename: str
    file_path: str
    file_size_bytes: Optional[int] = None
    file_type: str
    processing_status: str
    page_count: Optional[int] = None
    full_text: Optional[str] = None
    document_type: Optional[str] = None
    ai_summary: Optional[str] = None
    key_topics: Optional[List[str]] = None
    sentiment: Optional[str] = None
    error_message: Optional[str] = None
    upload_date: Optional[datetime] = None
    processed_date: Optional[datetime] = None


class PageOut(CamelModel):
    id: int
    document_id: int
    page_number: int
    page_text: Optional[str] = None


class DocumentDetail(DocumentOut):
    pages: List[PageOut] = []


class DocumentList(CamelModel):
    documents: List[DocumentOut]
    total: int


class StatusOut(CamelModel):
    processing_status: str
    error_message: Optional[str] = None


class ReprocessOut(CamelModel):
    message: str
    document_id: int


class DashboardStats(CamelModel):
    total_documents: int
    processing_documents: int
    completed_documents: int
    failed_documents: int
    recent_documents: List[DocumentOut]


class SearchRequest(CamelModel):
    query: Optional[str] = None
    limit: Optional[int] = Field(default=None, ge=1, le=100)


class SearchResult(CamelModel):
    document_id: int
    document_title: str
    document_type: Optional[str] = None
    page_number: Optional[int] = None
    chunk_text: str
    score: float


class SearchResponse(CamelModel):
    results: List[SearchResult]
    total: int


class AskRequest(CamelModel):
    question: Optional[str] = None


class PageInsightRequest(CamelModel):
    page_number: int = Field(ge=1)


class PageCitation(CamelModel):
    page_number: Optional[int] = None
    excerpt: str = ""


class Citation(PageCitation):
    document_id: Optional[int] = None
    document_title: Optional[str] = None


class DocumentAnswer(CamelModel):
    answer: str
    citations: List[PageCitation] = []


class CorpusAnswer(CamelModel):
    answer: str
    citations: List[Citation] = []
    insufficient_evidence: bool = False


class PageInsightOut(CamelModel):
    summary: str
    key_points: List[str] = []


class SummaryOut(CamelModel):
    summary: str
    key_themes: List[str] = []
    risks: List[str] = []
    opportunities: List[str] = []
    sentiment: Optional[str] = None


class QaHistoryOut(CamelModel):
    id: int
    question: str
    answer: str
    citations: List[Citation] = []
    document_ids: List[int] = []
    created_at: Optional[datetime] = None


class HealthResponse(BaseModel):
    status: str
    components: Dict[str, Any]
