from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import List, Optional

from pydantic import field_validator


PDF = "application/pdf"
XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
XLS = "application/vnd.ms-excel"
DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
CSV = "text/csv"
PNG = "image/png"
JPEG = "image/jpeg"


class Settings(BaseSettings):
    # Generation service (Gemini REST)
    gemini_api_key: str = ""
    generation_model: str = "gemini-2.5-flash"
    classification_model: str = "gemini-2.5-flash-lite"
    generation_timeout_seconds: float = 120.0

    database_url: str = "sqlite+aiosqlite:///./findocs.db"

    # Object storage: "local" keeps blobs under upload_dir, "minio" uses the bucket below.
    storage_backend: str = "local"
    upload_dir: str = "./uploads"
    minio_endpoint: str = ""
    minio_bucket: str = "documents"
    minio_root_user: str = ""
    minio_root_password: str = ""
    upload_url_expiry_seconds: int = 900

    max_upload_bytes: int = 50 * 1024 * 1024
    # ALLOWED_CONTENT_TYPES is read from the environment as a JSON array
    allowed_content_types: List[str] = [PDF, XLSX, XLS, DOCX, CSV, PNG, JPEG]

    # Extraction switches; defaults keep placeholder text for non-PDF formats
    pdf_native_pages: bool = False
    extract_docx: bool = False
    ocr_images: bool = False

    chunk_max_chars: int = 2000
    chars_per_token: int = 4
    classification_preview_chars: int = 2000

    search_limit: int = 20
    ask_chunk_limit: int = 10
    fallback_document_limit: int = 5
    title_match_limit: int = 10
    preview_chars: int = 300
    context_char_limit: int = 50_000
    qa_history_limit: int = 20

    # Await the pipeline inside the request instead of scheduling it
    sync_ingest: bool = False

    log_level: str = "INFO"
    log_dir: Optional[str] = "logs"
    # Enable verbose pipeline stage logs (ingest + ask flow) when True
    pipeline_debug: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"

    @field_validator("storage_backend")
    def _check_backend(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("local", "minio"):
            raise ValueError("STORAGE_BACKEND must be 'local' or 'minio'")
        return v


@lru_cache
def get_settings() -> Settings:
    return Settings()
