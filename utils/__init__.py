"""
Utility functions for AB Loop.
"""

from .formatting import format_time, format_millis, parse_time, format_speed

__all__ = ['format_time', 'format_millis', 'parse_time', 'format_speed']
