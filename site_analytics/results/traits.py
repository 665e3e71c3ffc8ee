"""
Trait enrichment.

Rows that carry an ``identified_user_id`` get the profile traits stored for
that user. Lookups are batched: one store round trip per result set, none
when no row is identified.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from ..backends.base import TraitStore

logger = logging.getLogger(__name__)

TRAITS_FIELD = "traits"
ID_FIELD = "identified_user_id"


def distinct_identified_ids(rows: Iterable[Mapping[str, Any]], id_field: str = ID_FIELD) -> list[str]:
    """Distinct non-empty ids in first-seen order."""
    seen: dict[str, None] = {}
    for row in rows:
        value = row.get(id_field)
        if value:
            seen.setdefault(str(value), None)
    return list(seen)


class TraitEnricher:
    """Merges user traits into result rows.

    Example:
        >>> enricher = TraitEnricher(trait_store)
        >>> rows = await enricher.enrich(rows, site_id=42)
        >>> rows[0]["traits"]
        {'plan': 'pro'}
    """

    def __init__(self, store: TraitStore, id_field: str = ID_FIELD) -> None:
        self.store = store
        self.id_field = id_field

    async def enrich(self, rows: Iterable[Mapping[str, Any]], site_id: int) -> list[dict[str, Any]]:
        """Return new rows, each with a ``traits`` mapping or None.

        Store failures propagate unchanged (as StorageIOError).
        """
        rows = list(rows)
        ids = distinct_identified_ids(rows, self.id_field)

        traits_by_id: dict[str, dict[str, Any]] = {}
        if ids:
            traits_by_id = await self.store.get_traits(site_id, ids)
            logger.debug(
                "Fetched traits for %d of %d identified users (site %s)",
                len(traits_by_id),
                len(ids),
                site_id,
            )

        enriched = []
        for row in rows:
            user_id = row.get(self.id_field)
            traits = traits_by_id.get(str(user_id)) if user_id else None
            enriched.append({**row, TRAITS_FIELD: traits})
        return enriched
