"""Coordination of indexing and search for notes."""

from .coordinator import EPOCH, IndexCoordinator, create_index_coordinator

__all__ = ["EPOCH", "IndexCoordinator", "create_index_coordinator"]
