from pydantic import BaseModel

class TextChunk(BaseModel):
    text: str
    index: int                       # position in the document, starting at 0
    char_start: int
    char_end: int                    # exclusive

class VectorMatch(BaseModel):
    text: str
    score: float
    document_id: int
    document_name: str
    chunk_index: int
