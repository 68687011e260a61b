from .names import STOP_TERMS, IndexEntry, NameIndex, NameIndexBuilder

__all__ = ["STOP_TERMS", "IndexEntry", "NameIndex", "NameIndexBuilder"]
