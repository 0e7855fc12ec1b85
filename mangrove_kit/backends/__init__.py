"""
Optional inference backends for mangrove_kit.

Each backend imports its runtime lazily, so decoding, NMS and the decision policy
work without any inference runtime installed.
"""

from __future__ import annotations

__all__ = []
