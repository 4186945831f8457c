"""
Vault backends -- pluggable adapters selected by identifier.

Importing this package registers every built-in adapter.
"""

from .base import (
    Capability,
    Check,
    VaultBackend,
    available_backends,
    create_backend,
    register_backend,
)
from .bitwarden import BitwardenBackend
from .onepassword import OnePasswordBackend
from .passstore import PassBackend

__all__ = [
    "BitwardenBackend",
    "Capability",
    "Check",
    "OnePasswordBackend",
    "PassBackend",
    "VaultBackend",
    "available_backends",
    "create_backend",
    "register_backend",
]
