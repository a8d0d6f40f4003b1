"""Infrastructure domain: database layer and path fingerprints."""

from notehunt.infrastructure.db import (
    SCHEMA_VERSION,
    create_schema,
    get_meta,
    open_db,
    set_meta,
)
from notehunt.infrastructure.fingerprint import canonical_path, fingerprint

__all__ = [
    "SCHEMA_VERSION",
    "canonical_path",
    "create_schema",
    "fingerprint",
    "get_meta",
    "open_db",
    "set_meta",
]
