"""Woodpecker — knowledge workspace core: ingestion, retrieval and streaming chat."""

__version__ = "0.1.0"
