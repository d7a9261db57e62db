"""Core data access: the immutable observation repository."""

from coralstats.core.repository import (
    ObservationRepository,
    ObservationFilter,
    apply_filter,
    unfiltered_columns,
)

__all__ = ["ObservationRepository", "ObservationFilter", "apply_filter", "unfiltered_columns"]
