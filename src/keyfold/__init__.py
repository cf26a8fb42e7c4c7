"""keyfold keyword deduplication package."""

from __future__ import annotations

from .config import Settings
from .engine import DedupEngine, DedupResult
from .records import KeywordRecord

__all__ = [
    "Settings",
    "DedupEngine",
    "DedupResult",
    "KeywordRecord",
    "RemoteDedupClient",
    "create_app",
]


def __getattr__(name: str):  # pragma: no cover - small helper
    if name == "RemoteDedupClient":
        from .remote import RemoteDedupClient

        return RemoteDedupClient
    if name == "create_app":
        from .app import create_app

        return create_app
    raise AttributeError(f"module 'keyfold' has no attribute {name}")
