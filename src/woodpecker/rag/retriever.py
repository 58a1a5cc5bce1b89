"""Retrieval engine: workspace scope → ranked full-text search.

Retrieval is lexical only. The scope is the set of sources linked to the
workspace with ``enabled = true``; the search itself is the repository's
FTS5 cascade (see ``Repository.search_chunks``):

  rank = -bm25(chunks_fts)   higher is better
  ties → source_id, chunk_index, rowid (ascending)

The inert ``retrieval.similarity_threshold`` / ``hybrid_search`` /
``keyword_weight`` / ``reranker`` settings are never read here.
"""

from __future__ import annotations

import logging

from woodpecker.db.models import SearchHit
from woodpecker.db.repository import Repository

logger = logging.getLogger(__name__)

DEFAULT_MAX_RESULTS = 5


def retrieve(
    query: str,
    workspace_id: str,
    repo: Repository,
    max_results: int = DEFAULT_MAX_RESULTS,
) -> list[SearchHit]:
    """Return up to *max_results* chunks for *query*, best first.

    A workspace without enabled sources yields ``[]`` without running a
    search.
    """
    source_ids = repo.enabled_source_ids(workspace_id)
    if not source_ids:
        logger.info("Workspace %s has no enabled sources; skipping search", workspace_id)
        return []

    hits = repo.search_chunks(query, source_ids, max_results)
    logger.info(
        "Retrieved %d chunk(s) from %d enabled source(s) for workspace %s",
        len(hits),
        len(source_ids),
        workspace_id,
    )
    return hits
