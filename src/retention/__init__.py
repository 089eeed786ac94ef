"""
Retention Module
"""
from .compactor import CompactionResult, RetentionCompactor

__all__ = ["CompactionResult", "RetentionCompactor"]
