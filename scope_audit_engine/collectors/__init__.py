from .base import CollectionOutcome
from .assignments import AssignmentCollector
from .normalize import normalize_assignment

__all__ = [
    "CollectionOutcome",
    "AssignmentCollector",
    "normalize_assignment",
]
