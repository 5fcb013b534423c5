"""
ctxlib: per-namespace memory and artifact persistence with semantic retrieval.
"""

__version__ = "0.3.0"
