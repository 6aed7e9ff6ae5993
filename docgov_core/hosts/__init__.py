"""
Document host implementations.
"""

from .memory import InMemoryDocumentHost
from .json_file import JsonDocumentHost

__all__ = ["InMemoryDocumentHost", "JsonDocumentHost"]
