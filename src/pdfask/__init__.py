"""Question answering over uploaded PDF documents with page-level citations."""

__version__ = "0.1.0"
