"""Post-processing of query results: numeric normalization and trait enrichment."""

from .normalizer import (
    DEFAULT_SCHEMA,
    IDENTIFIER_FIELDS,
    FieldKind,
    ResultNormalizer,
    normalize_results,
    parse_number,
)
from .traits import TraitEnricher, distinct_identified_ids

__all__ = [
    "FieldKind",
    "ResultNormalizer",
    "DEFAULT_SCHEMA",
    "IDENTIFIER_FIELDS",
    "normalize_results",
    "parse_number",
    "TraitEnricher",
    "distinct_identified_ids",
]
