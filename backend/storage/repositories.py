"""
Typed Repositories
==================
Thin pydantic layer over IDocumentStore for the two collections:

- OrderRepository     ("orders")
- DeliveryRepository  ("deliveries")

Documents go in via model_dump(mode="json") and come back validated.
Partial updates accept Python values (enums, datetimes) and serialize them.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from schemas.order_models import DeliveryRecord, DeliveryStatus, Order, utcnow
from storage.document_store import IDocumentStore


def _to_document_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    return value


def _to_document(partial: Dict[str, Any]) -> Dict[str, Any]:
    return {key: _to_document_value(value) for key, value in partial.items()}


class OrderRepository:
    """Orders keyed by order id"""

    def __init__(self, store: IDocumentStore):
        self._store = store

    async def get(self, order_id: str) -> Optional[Order]:
        doc = await self._store.get(order_id)
        return Order.model_validate(doc) if doc else None

    async def create(self, order: Order) -> Order:
        doc = await self._store.create(order.id, order.model_dump(mode="json"))
        return Order.model_validate(doc)

    async def update(self, order_id: str, **fields: Any) -> Optional[Order]:
        fields.setdefault("updated_at", utcnow())
        doc = await self._store.update(order_id, _to_document(fields))
        return Order.model_validate(doc) if doc else None

    async def delete(self, order_id: str) -> bool:
        return await self._store.delete(order_id)


class DeliveryRepository:
    """Delivery records; looked up by their order back-reference"""

    def __init__(self, store: IDocumentStore):
        self._store = store

    async def get(self, delivery_id: str) -> Optional[DeliveryRecord]:
        doc = await self._store.get(delivery_id)
        return DeliveryRecord.model_validate(doc) if doc else None

    async def create(self, record: DeliveryRecord) -> DeliveryRecord:
        doc = await self._store.create(record.id, record.model_dump(mode="json"))
        return DeliveryRecord.model_validate(doc)

    async def update(self, delivery_id: str, **fields: Any) -> Optional[DeliveryRecord]:
        fields.setdefault("updated_at", utcnow())
        doc = await self._store.update(delivery_id, _to_document(fields))
        return DeliveryRecord.model_validate(doc) if doc else None

    async def get_for_order(self, order_id: str) -> Optional[DeliveryRecord]:
        records = await self.list_for_order(order_id)
        return records[0] if records else None

    async def list_for_order(self, order_id: str) -> List[DeliveryRecord]:
        docs = await self._store.list_where("order_id", order_id)
        return [DeliveryRecord.model_validate(doc) for doc in docs]

    async def list_in_progress(self) -> List[DeliveryRecord]:
        records: List[DeliveryRecord] = []
        for status in (DeliveryStatus.PREPARING, DeliveryStatus.ON_THE_WAY):
            docs = await self._store.list_where("delivery_status", status.value)
            records.extend(DeliveryRecord.model_validate(doc) for doc in docs)
        return records

    async def delete_for_order(self, order_id: str) -> int:
        """Delete every record that points at the order. Returns the count."""
        deleted = 0
        for record in await self.list_for_order(order_id):
            if await self._store.delete(record.id):
                deleted += 1
        return deleted
