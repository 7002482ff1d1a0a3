from .progression import MAX_ROUND, MIN_ROUND, ProgressionCalculator, ProgressionMode

__all__ = ["MAX_ROUND", "MIN_ROUND", "ProgressionCalculator", "ProgressionMode"]
