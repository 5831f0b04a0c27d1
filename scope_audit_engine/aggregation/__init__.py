from .aggregator import aggregate, summarize

__all__ = ["aggregate", "summarize"]
