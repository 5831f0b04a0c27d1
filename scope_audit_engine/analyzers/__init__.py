from .classifier import Classifier, MalformedDataError, parse_timestamp

__all__ = [
    "Classifier",
    "MalformedDataError",
    "parse_timestamp",
]
