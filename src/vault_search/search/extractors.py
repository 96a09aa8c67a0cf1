"""Text extraction for binary vault files."""

from pathlib import PurePosixPath

import fitz  # PyMuPDF


def is_pdf_path(path: str) -> bool:
    return PurePosixPath(path).suffix.lower() == ".pdf"


def extract_pdf_text(data: bytes) -> str:
    """Text of every page, pages separated by a blank line.

    Raises RuntimeError (PyMuPDF's FileDataError) for data that is not a
    readable PDF.
    """
    with fitz.open(stream=data, filetype="pdf") as document:
        pages = [page.get_text("text").strip() for page in document]
    return "\n\n".join(page for page in pages if page)
