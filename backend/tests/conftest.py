import os
import tempfile

# Settings are cached on first import, so the environment is fixed before any findocs import
_TMP = tempfile.mkdtemp(prefix="findocs-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TMP}/test.db"
os.environ["UPLOAD_DIR"] = os.path.join(_TMP, "uploads")
os.environ["STORAGE_BACKEND"] = "local"
os.environ["SYNC_INGEST"] = "true"
os.environ["GEMINI_API_KEY"] = "test-key"
os.environ["LOG_DIR"] = ""
os.environ["PIPELINE_DEBUG"] = "false"

import fitz  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from findocs.core import runtime_state  # noqa: E402
from findocs.db import models  # noqa: E402,F401
from findocs.db.session import Base, SessionLocal, engine  # noqa: E402
from findocs.services import llm, storage, tasks  # noqa: E402


class FakeLLM:
    """Stands in for the generation service.

    Classification prompts get ``label``; every other prompt takes the next
    queued reply (or ``default``). A queued exception is raised instead.
    """

    def __init__(self):
        self.label = "other"
        self.replies = []
        self.default = "No answer."
        self.calls = []

    def queue(self, *replies):
        self.replies.extend(replies)

    @property
    def prompts(self):
        return [c["prompt"] for c in self.calls]

    def non_classify_calls(self):
        return [c for c in self.calls if not c["prompt"].startswith("Classify this document")]

    async def __call__(self, prompt, *, max_tokens=2048, model=None):
        self.calls.append({"prompt": prompt, "max_tokens": max_tokens, "model": model})
        if prompt.startswith("Classify this document"):
            if isinstance(self.label, Exception):
                raise self.label
            return self.label
        reply = self.replies.pop(0) if self.replies else self.default
        if isinstance(reply, Exception):
            raise reply
        return reply


@pytest.fixture
def fake_llm(monkeypatch):
    fake = FakeLLM()
    monkeypatch.setattr(llm, "generate_text", fake)
    return fake


@pytest.fixture
def object_store(tmp_path):
    store = storage.LocalObjectStore(str(tmp_path / "objects"))
    storage.set_object_store(store)
    yield store
    storage.set_object_store(None)


@pytest.fixture
async def db(fake_llm, object_store):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    runtime_state.reset()
    async with SessionLocal() as session:
        yield session
    await tasks.runner.drain()


@pytest.fixture
def client(db):
    from findocs.main import app
    return TestClient(app)


@pytest.fixture
def make_pdf():
    def _make(pages):
        doc = fitz.open()
        for text in pages:
            page = doc.new_page()
            if text:
                page.insert_text((72, 72), text)
        data = doc.tobytes()
        doc.close()
        return data
    return _make
