# storage/__init__.py
# ============================================================================
# FOODIE ORDER SERVICE: STORAGE MODULE
# ============================================================================
# Document stores (memory / redis) and the typed order + delivery repositories
# ============================================================================

from storage.document_store import (
    IDocumentStore,
    InMemoryDocumentStore,
    RedisDocumentStore,
    StoreFactory,
)
from storage.repositories import (
    OrderRepository,
    DeliveryRepository,
)

__all__ = [
    "IDocumentStore",
    "InMemoryDocumentStore",
    "RedisDocumentStore",
    "StoreFactory",
    "OrderRepository",
    "DeliveryRepository",
]
