
from typing import List, Tuple

from knowledge_hub.core.exceptions import InvalidConfig

DEFAULT_CHUNK_SIZE = 1000
DEFAULT_CHUNK_OVERLAP = 200


def chunk_spans(text: str, chunk_size: int = DEFAULT_CHUNK_SIZE, overlap: int = DEFAULT_CHUNK_OVERLAP) -> List[Tuple[int, int]]:
    """
    Trả về (start, end) của từng cửa sổ. Mỗi cửa sổ bắt đầu sau cửa sổ trước
    đúng chunk_size - overlap ký tự; cửa sổ cuối có thể ngắn hơn.
    """
    if chunk_size <= 0:
        raise InvalidConfig(f"chunk_size must be positive, got {chunk_size}")
    if overlap < 0:
        raise InvalidConfig(f"overlap must not be negative, got {overlap}")
    if overlap >= chunk_size:
        raise InvalidConfig(f"overlap ({overlap}) must be smaller than chunk_size ({chunk_size})")

    spans = []
    step = chunk_size - overlap
    start = 0
    length = len(text)
    while start < length:
        end = min(start + chunk_size, length)
        spans.append((start, end))
        if end == length:
            break
        start += step
    return spans


def chunk_text(text: str, chunk_size: int = DEFAULT_CHUNK_SIZE, overlap: int = DEFAULT_CHUNK_OVERLAP) -> List[str]:
    """Chia văn bản thành các đoạn chồng lấn kích thước cố định."""
    return [text[start:end] for start, end in chunk_spans(text, chunk_size, overlap)]
