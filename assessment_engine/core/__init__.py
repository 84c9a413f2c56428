"""
Core module for engine configuration, logging, errors and the two assessment
subsystems.
"""
from .config import settings

__all__ = ["settings"]
