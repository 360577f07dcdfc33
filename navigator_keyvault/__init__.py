"""Navigator KeyVault.

Encrypted storage and rotation policy for third-party API credentials.
"""
from .version import __version__

__all__ = ["__version__"]
