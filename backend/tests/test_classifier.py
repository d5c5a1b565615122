import pytest

from findocs.core.errors import UpstreamServiceError
from findocs.db.models import DocumentType
from findocs.services import classifier


@pytest.mark.parametrize("raw,expected", [
    ("annual_report", DocumentType.annual_report),
    ("  Quarterly_Earnings\n", DocumentType.quarterly_earnings),
    ("regulatory_filing", DocumentType.regulatory_filing),
    ("balance sheet", DocumentType.other),
    ("", DocumentType.other),
])
async def test_labels_are_validated(fake_llm, raw, expected):
    fake_llm.label = raw
    assert await classifier.classify("Q3 Report", "Revenue grew") is expected


async def test_service_failure_defaults_to_other(fake_llm):
    fake_llm.label = UpstreamServiceError("boom")
    assert await classifier.classify("Q3 Report", "Revenue grew") is DocumentType.other


async def test_prompt_uses_title_and_bounded_preview(fake_llm):
    fake_llm.label = "research_note"
    await classifier.classify("Broker Note", "y" * 5000)
    prompt = fake_llm.calls[0]["prompt"]
    assert "Document title: Broker Note" in prompt
    assert "y" * 2000 in prompt
    assert "y" * 2001 not in prompt
    assert "investor_presentation" in prompt
