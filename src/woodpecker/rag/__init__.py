"""Retrieval, context assembly, prompts and citation parsing."""

from woodpecker.rag.assembler import assemble_context
from woodpecker.rag.citations import extract_citations
from woodpecker.rag.prompts import build_system_prompt, persona_for
from woodpecker.rag.retriever import retrieve

__all__ = [
    "assemble_context",
    "build_system_prompt",
    "extract_citations",
    "persona_for",
    "retrieve",
]
