from .walker import HierarchyWalker, WalkResult

__all__ = ["HierarchyWalker", "WalkResult"]
