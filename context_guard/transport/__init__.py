from .chunking import find_natural_split_point, split_response_into_chunks
from .server import create_app

__all__ = [
    "create_app",
    "find_natural_split_point",
    "split_response_into_chunks",
]
