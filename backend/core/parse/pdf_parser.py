import logging
import fitz  # PyMuPDF
from core.errors import ExternalServiceError

logger = logging.getLogger(__name__)

class PDFTextExtractor:
    """
    Extracts the plain text of a PDF held in memory.
    Pages are joined with a blank line so sentence boundaries survive page breaks.
    """

    def extract_text(self, data: bytes) -> str:
        try:
            with fitz.open(stream=data, filetype="pdf") as doc:
                pages = [page.get_text("text") for page in doc]
        except Exception as e:
            logger.error(f"PDF text extraction failed: {e}")
            raise ExternalServiceError("text extractor", "extract_text") from e

        return "\n\n".join(p.strip() for p in pages if p.strip())
