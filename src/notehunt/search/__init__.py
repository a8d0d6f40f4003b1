"""Search domain: FTS5 search index and the batch indexer feeding it."""

from notehunt.search.index import SearchHit, SearchIndex, SearchIndexError
from notehunt.search.indexer import DEFAULT_BATCH_SIZE, Indexer, IndexRunResult, batched

__all__ = [
    "DEFAULT_BATCH_SIZE",
    "IndexRunResult",
    "Indexer",
    "SearchHit",
    "SearchIndex",
    "SearchIndexError",
    "batched",
]
