"""
Storage backends. ``build_store`` picks one by name (REGISTRATION_STORE_BACKEND).
"""
from django.core.exceptions import ImproperlyConfigured

from .base import IdentifierTaken, RegistrationStore
from .memory import MemoryStore


def build_store(backend):
    if backend == 'memory':
        return MemoryStore()
    if backend == 'database':
        from .database import DatabaseStore
        return DatabaseStore()
    raise ImproperlyConfigured(f"Unknown REGISTRATION_STORE_BACKEND: {backend!r}")


__all__ = ['IdentifierTaken', 'RegistrationStore', 'MemoryStore', 'build_store']
