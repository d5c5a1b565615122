from loguru import logger

from findocs.core.config import get_settings
from findocs.db.models import DocumentType
from findocs.services import llm

settings = get_settings()

VALID_TYPES = [t.value for t in DocumentType]

CLASSIFY_PROMPT = """Classify this document as one of: {types}.

Document title: {title}
Content preview: {preview}

Return only the classification type as a single word."""


def normalize_label(raw: str) -> DocumentType:
    label = (raw or "").strip().lower()
    if label in VALID_TYPES:
        return DocumentType(label)
    return DocumentType.other


async def classify(title: str, text: str) -> DocumentType:
    """Label a document from the fixed taxonomy; falls back to ``other`` on any problem."""
    prompt = CLASSIFY_PROMPT.format(
        types=", ".join(VALID_TYPES),
        title=title,
        preview=(text or "")[:settings.classification_preview_chars],
    )
    try:
        raw = await llm.generate_text(prompt, max_tokens=256, model=settings.classification_model)
    except Exception as e:  # classification never fails the pipeline
        logger.warning(f"Classification error: {e}")
        return DocumentType.other
    cleaned = (raw or "").strip()
    label = normalize_label(cleaned)
    if label is DocumentType.other and cleaned.lower() != DocumentType.other.value:
        logger.info(f"Classifier returned unknown label {cleaned[:40]!r}; using 'other'")
    return label
