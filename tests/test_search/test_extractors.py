"""Tests for binary content extraction."""

import fitz
import pytest

from vault_search.search.extractors import extract_pdf_text, is_pdf_path


def make_pdf(*pages: str) -> bytes:
    document = fitz.open()
    for text in pages:
        page = document.new_page()
        if text:
            page.insert_text((72, 72), text)
    data = document.tobytes()
    document.close()
    return data


class TestExtractPdfText:
    def test_pages_are_joined(self):
        assert extract_pdf_text(make_pdf("First page", "Second page")) == "First page\n\nSecond page"

    def test_blank_pages_are_skipped(self):
        assert extract_pdf_text(make_pdf("Cover", "", "Appendix")) == "Cover\n\nAppendix"

    def test_empty_data_raises(self):
        with pytest.raises(RuntimeError):
            extract_pdf_text(b"")


def test_is_pdf_path():
    assert is_pdf_path("docs/Report.PDF")
    assert not is_pdf_path("notes/pdf.md")
