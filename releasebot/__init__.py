"""
Release browser bot for the messaging platform.
"""

from .bot import ReleaseBot

__all__ = ["ReleaseBot"]
