"""Lazy service exports so importing the package does not open store connections."""

__all__ = [
    "coordinator",
    "bulk_ingestion",
    "guard",
    "derived_counts",
    "protection",
    "quotas",
    "notifier",
]

_REGISTRY_ATTRS = {
    "coordinator": "sync_coordinator",
    "bulk_ingestion": "bulk_ingestion",
    "guard": "archive_guard",
    "derived_counts": "derived_counts",
    "protection": "protection",
    "quotas": "quota_gate",
    "notifier": "notifier",
}


def __getattr__(name: str):
    if name in _REGISTRY_ATTRS:
        from app.services.registry import get_registry

        return getattr(get_registry(), _REGISTRY_ATTRS[name])
    raise AttributeError(name)
