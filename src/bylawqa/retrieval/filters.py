"""In-memory filter matching with the same semantics as the SQL filter builder."""

from bylawqa.core.types import ChunkMetadata, Filters

_FIELDS = ("bylaw_number", "category", "section", "title", "is_consolidated")


def matches_filters(metadata: ChunkMetadata, filters: Filters | None) -> bool:
    """True when metadata satisfies every recognised filter.

    Scalars match exactly, lists/tuples match membership, empty values and
    unknown keys are ignored, date_from/date_to bound date_enacted.
    """
    for key, value in (filters or {}).items():
        if value is None or value == "" or (isinstance(value, (list, tuple)) and not value):
            continue
        if key == "date_from":
            if not metadata.date_enacted or metadata.date_enacted < str(value):
                return False
        elif key == "date_to":
            if not metadata.date_enacted or metadata.date_enacted > str(value):
                return False
        elif key in _FIELDS:
            actual = getattr(metadata, key)
            if isinstance(value, (list, tuple)):
                if actual not in value:
                    return False
            elif actual != value:
                return False
    return True
