"""Stock mutations and the stock ledger.

Every write to ``Product.stock`` goes through this module. Decrements are a
single conditional UPDATE (``stock = stock - :q WHERE stock >= :q``) so two
writers racing for the last units can never both succeed; absolute
adjustments use compare-and-set on the previous value.

``decrement``, ``increment`` and ``set_stock`` never commit and run inside
the caller's transaction. ``record_movement``, ``receive_batch`` and
``record_production`` own their transaction.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from restodesk.core.cache import menu_cache
from restodesk.core.errors import ConflictError, InsufficientStockError, NotFoundError, ValidationError
from restodesk.models.product import Product
from restodesk.models.stock import MovementType, ProductionRecord, StockBatch, StockMovement

logger = logging.getLogger(__name__)

SET_STOCK_ATTEMPTS = 3


class StockService:
    """Service for stock changes on catalogue products."""

    def __init__(self, db: Session):
        self.db = db

    def get_product(self, restaurant_id: int, product_id: int) -> Product:
        product = self.db.query(Product).filter(
            Product.id == product_id,
            Product.restaurant_id == restaurant_id,
        ).first()
        if not product:
            raise NotFoundError(f"Product {product_id} not found")
        return product

    def _current_stock(self, product_id: int) -> int:
        return self.db.execute(
            select(Product.stock).where(Product.id == product_id)
        ).scalar_one()

    def _sync(self, product: Product) -> int:
        self.db.refresh(product, attribute_names=["stock"])
        return product.stock

    def _record(
        self,
        product: Product,
        movement_type: MovementType,
        delta: int,
        stock_after: int,
        reason: Optional[str] = None,
        reference: Optional[str] = None,
        unit_cost: Optional[Decimal] = None,
    ) -> StockMovement:
        movement = StockMovement(
            product_id=product.id,
            movement_type=movement_type,
            quantity=delta,
            stock_after=stock_after,
            reason=reason,
            reference=reference,
            unit_cost=unit_cost,
        )
        self.db.add(movement)
        return movement

    # ===== IN-TRANSACTION PRIMITIVES =====

    def decrement(
        self,
        product: Product,
        quantity: int,
        movement_type: MovementType = MovementType.SALE,
        reason: Optional[str] = None,
        reference: Optional[str] = None,
    ) -> StockMovement:
        """Atomically take ``quantity`` units; raise if fewer are on hand."""
        if quantity <= 0:
            raise ValidationError("Quantity must be greater than zero")

        result = self.db.execute(
            update(Product)
            .where(Product.id == product.id, Product.stock >= quantity)
            .values(stock=Product.stock - quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            available = self._current_stock(product.id)
            raise InsufficientStockError(product.name, product.id, available, quantity)

        stock_after = self._sync(product)
        if product.is_low_stock:
            logger.warning(
                f"Low stock: '{product.name}' (ID: {product.id}) at {stock_after}, "
                f"minimum {product.minimum_stock}"
            )
        return self._record(product, movement_type, -quantity, stock_after, reason, reference)

    def increment(
        self,
        product: Product,
        quantity: int,
        movement_type: MovementType = MovementType.ENTRY,
        reason: Optional[str] = None,
        reference: Optional[str] = None,
        unit_cost: Optional[Decimal] = None,
    ) -> StockMovement:
        if quantity <= 0:
            raise ValidationError("Quantity must be greater than zero")

        self.db.execute(
            update(Product)
            .where(Product.id == product.id)
            .values(stock=Product.stock + quantity)
            .execution_options(synchronize_session=False)
        )
        stock_after = self._sync(product)
        return self._record(
            product, movement_type, quantity, stock_after, reason, reference, unit_cost
        )

    def set_stock(
        self,
        product: Product,
        new_stock: int,
        reason: Optional[str] = None,
        reference: Optional[str] = None,
    ) -> StockMovement:
        """Set an absolute stock level, recorded as an adjustment."""
        if new_stock < 0:
            raise ValidationError("Stock cannot be negative")

        for _ in range(SET_STOCK_ATTEMPTS):
            previous = self._current_stock(product.id)
            result = self.db.execute(
                update(Product)
                .where(Product.id == product.id, Product.stock == previous)
                .values(stock=new_stock)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                self._sync(product)
                return self._record(
                    product, MovementType.ADJUSTMENT, new_stock - previous, new_stock,
                    reason, reference,
                )
        raise ConflictError(
            f"Stock for '{product.name}' changed concurrently, retry the adjustment"
        )

    # ===== TRANSACTIONAL OPERATIONS =====

    def _commit(self, restaurant_id: int):
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        menu_cache.invalidate(restaurant_id)

    def record_movement(
        self,
        restaurant_id: int,
        product_id: int,
        movement_type: MovementType,
        quantity: int,
        reason: Optional[str] = None,
        reference: Optional[str] = None,
    ) -> StockMovement:
        """Manual stock movement from the back office.

        ENTRY adds ``quantity``, EXIT removes it (refused if short) and
        ADJUSTMENT sets the stock to ``quantity``.
        """
        product = self.get_product(restaurant_id, product_id)
        try:
            if movement_type == MovementType.ENTRY:
                movement = self.increment(product, quantity, MovementType.ENTRY, reason, reference)
            elif movement_type == MovementType.EXIT:
                movement = self.decrement(product, quantity, MovementType.EXIT, reason, reference)
            elif movement_type == MovementType.ADJUSTMENT:
                movement = self.set_stock(product, quantity, reason, reference)
            else:
                raise ValidationError(
                    f"Movement type '{movement_type.value}' cannot be recorded manually"
                )
        except Exception:
            self.db.rollback()
            raise
        self._commit(restaurant_id)
        self.db.refresh(movement)
        logger.info(
            f"Stock {movement_type.value} for product {product_id}: "
            f"{movement.quantity:+d} -> {movement.stock_after}"
        )
        return movement

    def list_movements(
        self,
        restaurant_id: int,
        product_id: Optional[int] = None,
        limit: int = 100,
    ) -> List[StockMovement]:
        query = self.db.query(StockMovement).join(Product).filter(
            Product.restaurant_id == restaurant_id
        )
        if product_id is not None:
            query = query.filter(StockMovement.product_id == product_id)
        return query.order_by(StockMovement.id.desc()).limit(limit).all()

    def receive_batch(
        self,
        restaurant_id: int,
        product_id: int,
        batch_number: str,
        quantity: int,
        unit_cost: Optional[Decimal] = None,
        supplier: Optional[str] = None,
        expiration_date: Optional[date] = None,
        notes: Optional[str] = None,
    ) -> StockBatch:
        product = self.get_product(restaurant_id, product_id)
        existing = self.db.query(StockBatch).filter(
            StockBatch.product_id == product_id,
            StockBatch.batch_number == batch_number,
        ).first()
        if existing:
            raise ConflictError(
                f"Batch '{batch_number}' already exists for product '{product.name}'"
            )

        batch = StockBatch(
            product_id=product_id,
            batch_number=batch_number,
            quantity=quantity,
            unit_cost=unit_cost,
            supplier=supplier,
            expiration_date=expiration_date,
            notes=notes,
        )
        try:
            self.db.add(batch)
            self.increment(
                product, quantity, MovementType.BATCH,
                reason=f"Batch {batch_number}", reference=batch_number, unit_cost=unit_cost,
            )
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError(
                f"Batch '{batch_number}' already exists for product '{product.name}'"
            )
        except Exception:
            self.db.rollback()
            raise
        self._commit(restaurant_id)
        self.db.refresh(batch)
        return batch

    def list_batches(
        self,
        restaurant_id: int,
        product_id: Optional[int] = None,
    ) -> List[StockBatch]:
        query = self.db.query(StockBatch).join(Product).filter(
            Product.restaurant_id == restaurant_id
        )
        if product_id is not None:
            query = query.filter(StockBatch.product_id == product_id)
        return query.order_by(StockBatch.id.desc()).all()

    def record_production(
        self,
        restaurant_id: int,
        product_id: int,
        quantity: int,
        unit_cost: Optional[Decimal] = None,
        produced_by: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> ProductionRecord:
        product = self.get_product(restaurant_id, product_id)
        record = ProductionRecord(
            product_id=product_id,
            quantity=quantity,
            unit_cost=unit_cost,
            produced_by=produced_by,
            notes=notes,
        )
        try:
            self.db.add(record)
            self.increment(
                product, quantity, MovementType.PRODUCTION,
                reason=notes or "Production", unit_cost=unit_cost,
            )
        except Exception:
            self.db.rollback()
            raise
        self._commit(restaurant_id)
        self.db.refresh(record)
        return record

    def list_production(
        self,
        restaurant_id: int,
        product_id: Optional[int] = None,
    ) -> List[ProductionRecord]:
        query = self.db.query(ProductionRecord).join(Product).filter(
            Product.restaurant_id == restaurant_id
        )
        if product_id is not None:
            query = query.filter(ProductionRecord.product_id == product_id)
        return query.order_by(ProductionRecord.id.desc()).all()

    def low_stock_products(self, restaurant_id: int) -> List[Product]:
        return (
            self.db.query(Product)
            .filter(
                Product.restaurant_id == restaurant_id,
                Product.is_active == True,  # noqa: E712
                Product.stock <= Product.minimum_stock,
            )
            .order_by(Product.stock, Product.name)
            .all()
        )
