"""
Configuration loading for coursepack.
"""

from .config_loader import CoursePackSettings, ServerSettings

__all__ = ["CoursePackSettings", "ServerSettings"]
