"""Claudia Vault.

Encrypted storage engine for Claudia workspaces.
"""
from .version import __version__

__all__ = ["__version__"]
