import logging

import pytest

from proposal_engine.documents import InMemoryDocumentProvider, LocalDocumentProvider
from proposal_engine.errors import DocumentNotFound, DocumentParseError, DocumentUnauthorized, InputMissing
from proposal_engine.logging_config import configure_logging
from proposal_engine.settings import Settings


@pytest.fixture
def library(tmp_path):
    (tmp_path / "rfp.txt").write_text("Community health grant, deadline in May.", encoding="utf-8")
    (tmp_path / "notes.md").write_text("# Notes\nEligibility: nonprofits", encoding="utf-8")
    (tmp_path / "blank.txt").write_text("   \n", encoding="utf-8")
    (tmp_path / "binary.txt").write_bytes(b"\xff\xfe\x00bad")
    return LocalDocumentProvider(tmp_path)


async def test_loads_text_with_or_without_suffix(library):
    document = await library.load_document("rfp")
    assert document.text.startswith("Community health grant")
    assert document.metadata["filename"] == "rfp.txt"
    assert (await library.load_document("notes.md")).text.startswith("# Notes")


@pytest.mark.parametrize("document_id,error", [
    ("missing", DocumentNotFound),
    ("blank", DocumentParseError),
    ("binary.txt", DocumentParseError),
    ("../outside.txt", DocumentUnauthorized),
])
async def test_document_errors_are_fatal_input_errors(library, document_id, error):
    with pytest.raises(error) as excinfo:
        await library.load_document(document_id)
    assert isinstance(excinfo.value, InputMissing)
    assert excinfo.value.fatal


async def test_in_memory_provider():
    provider = InMemoryDocumentProvider({"a": "Text", "empty": ""})
    assert (await provider.load_document("a")).metadata == {"source": "memory"}
    with pytest.raises(DocumentParseError):
        await provider.load_document("empty")


def test_settings_overrides_are_per_instance():
    custom = Settings(MAX_AUTO_REVISIONS=5)
    assert custom.MAX_AUTO_REVISIONS == 5
    assert Settings().MAX_AUTO_REVISIONS == Settings.MAX_AUTO_REVISIONS
    with pytest.raises(AttributeError):
        Settings(NOT_A_SETTING=1)


def test_settings_validation():
    with pytest.raises(ValueError) as excinfo:
        Settings(GEMINI_API_KEY="", RETRY_MAX_ATTEMPTS=0).validate()
    assert "GEMINI_API_KEY" in str(excinfo.value)
    assert "RETRY_MAX_ATTEMPTS" in str(excinfo.value)
    Settings(GEMINI_API_KEY="key").validate()
    Settings(GEMINI_API_KEY="").validate(require_llm=False)


def test_configure_logging_is_idempotent():
    root = logging.getLogger()
    before = list(root.handlers)
    level = root.level
    try:
        configure_logging("DEBUG")
        configure_logging("DEBUG")
        added = [h for h in root.handlers if h.get_name() == "proposal_engine"]
        assert len(added) == 1
        assert root.level == logging.DEBUG
    finally:
        for handler in root.handlers[:]:
            if handler not in before:
                root.removeHandler(handler)
        root.setLevel(level)
