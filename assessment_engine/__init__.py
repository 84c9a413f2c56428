"""
Adaptive assessment engine: IRT-driven adaptive testing and SM-2 review
scheduling.
"""

__version__ = "0.1.0"
