from .client import IntelCache

__all__ = ["IntelCache"]

__version__ = '0.3.0'
