from .client import ArmClient

__all__ = ["ArmClient"]
