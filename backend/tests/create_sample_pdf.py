import textwrap
import fitz

def make_pdf_bytes(pages: list[str]) -> bytes:
    """Builds an in-memory PDF with one page per entry of `pages`."""
    doc = fitz.open()
    for text in pages:
        page = doc.new_page()
        y = 50
        for line in textwrap.wrap(text, width=80):
            page.insert_text((50, y), line, fontsize=11)
            y += 14
    data = doc.tobytes()
    doc.close()
    return data

def create_sample_pdf(path: str, pages: int = 10):
    data = make_pdf_bytes([
        f"Chapter {i + 1}. Photosynthesis converts light energy into chemical energy. "
        f"Chlorophyll in the leaves absorbs sunlight on page {i + 1}."
        for i in range(pages)
    ])
    with open(path, "wb") as f:
        f.write(data)

if __name__ == "__main__":
    create_sample_pdf("sample.pdf")
    print("Created sample.pdf")
