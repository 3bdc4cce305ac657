"""HiNATA knowledge-capture storage and indexing engine."""

__version__ = "0.1.0"
