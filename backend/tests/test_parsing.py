from unittest.mock import patch

import pytest
from create_sample_pdf import make_pdf_bytes
from core.errors import ExternalServiceError
from core.parse.pdf_parser import PDFTextExtractor

def test_extracts_text_from_every_page():
    print("Testing PDFTextExtractor...")
    data = make_pdf_bytes([
        "Photosynthesis happens in the chloroplast.",
        "Volcanoes erupt when magma reaches the surface."
    ])

    text = PDFTextExtractor().extract_text(data)

    assert "Photosynthesis happens in the chloroplast." in text
    assert "Volcanoes erupt when magma reaches the surface." in text
    assert text.index("Photosynthesis") < text.index("Volcanoes")
    print("PDFTextExtractor tests PASSED")

def test_blank_pdf_gives_empty_text():
    data = make_pdf_bytes([""])
    assert PDFTextExtractor().extract_text(data) == ""

def test_unreadable_document_names_the_extractor():
    with patch("core.parse.pdf_parser.fitz.open", side_effect=RuntimeError("cannot open broken document")):
        with pytest.raises(ExternalServiceError) as exc_info:
            PDFTextExtractor().extract_text(b"%PDF-1.4 garbage")

    assert exc_info.value.service == "text extractor"
    assert "broken" not in exc_info.value.message

if __name__ == "__main__":
    test_extracts_text_from_every_page()
    test_blank_pdf_gives_empty_text()
