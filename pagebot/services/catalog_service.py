from typing import Optional
from uuid import UUID

from fastapi.concurrency import run_in_threadpool

from pagebot.database import SessionLocal
from pagebot.logging_config import get_logger
from pagebot.models import PaymentMethod, Product, Property

logger = get_logger("catalog_service")


def _parse_id(raw) -> Optional[UUID]:
    if isinstance(raw, UUID):
        return raw
    try:
        return UUID(str(raw))
    except (TypeError, ValueError):
        return None


class CatalogRepository:
    """Read-only access to active catalog rows, ordered for display."""

    def __init__(self, session_factory=SessionLocal):
        self._session_factory = session_factory

    def _list(self, model) -> list:
        db = self._session_factory()
        try:
            return (
                db.query(model)
                .filter(model.is_active.is_(True))
                .order_by(model.display_order, model.created_at)
                .all()
            )
        finally:
            db.close()

    def _get(self, model, raw_id) -> Optional[object]:
        item_id = _parse_id(raw_id)
        if item_id is None:
            logger.warning(f"Invalid {model.__tablename__} id: {raw_id}")
            return None
        db = self._session_factory()
        try:
            return db.query(model).filter(model.id == item_id).first()
        finally:
            db.close()

    async def get_products(self) -> list:
        return await run_in_threadpool(self._list, Product)

    async def get_properties(self) -> list:
        return await run_in_threadpool(self._list, Property)

    async def get_payment_methods(self) -> list:
        return await run_in_threadpool(self._list, PaymentMethod)

    async def get_product(self, product_id) -> Optional[Product]:
        return await run_in_threadpool(self._get, Product, product_id)

    async def get_property(self, property_id) -> Optional[Property]:
        return await run_in_threadpool(self._get, Property, property_id)
