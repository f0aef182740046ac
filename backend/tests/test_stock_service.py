"""Tests for stock mutations and the stock ledger."""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import update
from sqlalchemy.orm import Session

from restodesk.core.errors import ConflictError, InsufficientStockError, NotFoundError, ValidationError
from restodesk.models.product import Product
from restodesk.models.stock import MovementType, StockMovement
from restodesk.services.stock_service import StockService


class TestDecrement:
    """Conditional decrement of product stock."""

    def test_decrement_reduces_stock_and_records_sale(self, db_session: Session, products: dict):
        coxinha = products["coxinha"]
        movement = StockService(db_session).decrement(coxinha, 4, reference="ORD-1")
        db_session.commit()

        assert coxinha.stock == 16
        assert movement.movement_type == MovementType.SALE
        assert movement.quantity == -4
        assert movement.stock_after == 16
        assert movement.reference == "ORD-1"

    def test_decrement_exact_stock_reaches_zero(self, db_session: Session, products: dict):
        kibe = products["kibe"]
        StockService(db_session).decrement(kibe, 3)
        db_session.commit()
        assert kibe.stock == 0

    def test_decrement_more_than_available_raises(self, db_session: Session, products: dict):
        kibe = products["kibe"]
        with pytest.raises(InsufficientStockError) as exc_info:
            StockService(db_session).decrement(kibe, 4)

        assert exc_info.value.available == 3
        assert exc_info.value.needed == 4
        assert exc_info.value.product_id == kibe.id
        db_session.rollback()
        assert db_session.get(Product, kibe.id).stock == 3

    def test_decrement_uses_database_value_not_loaded_value(self, db_session: Session, products: dict):
        """Availability in the error is read back from the database."""
        kibe = products["kibe"]
        db_session.execute(
            update(Product).where(Product.id == kibe.id).values(stock=1)
            .execution_options(synchronize_session=False)
        )
        db_session.commit()

        with pytest.raises(InsufficientStockError) as exc_info:
            StockService(db_session).decrement(kibe, 2)
        assert exc_info.value.available == 1

    def test_decrement_rejects_non_positive_quantity(self, db_session: Session, products: dict):
        with pytest.raises(ValidationError):
            StockService(db_session).decrement(products["coxinha"], 0)


class TestManualMovements:
    """Back-office entries, exits and adjustments."""

    def test_entry_adds_stock(self, db_session: Session, restaurant, products: dict):
        service = StockService(db_session)
        movement = service.record_movement(
            restaurant.id, products["suco"].id, MovementType.ENTRY, 5, reason="Delivery from supplier"
        )
        assert movement.quantity == 5
        assert movement.stock_after == 15
        assert service.get_product(restaurant.id, products["suco"].id).stock == 15

    def test_exit_refused_when_short(self, db_session: Session, restaurant, products: dict):
        service = StockService(db_session)
        with pytest.raises(InsufficientStockError):
            service.record_movement(restaurant.id, products["kibe"].id, MovementType.EXIT, 10)
        assert service.get_product(restaurant.id, products["kibe"].id).stock == 3
        assert db_session.query(StockMovement).count() == 0

    def test_adjustment_sets_absolute_level(self, db_session: Session, restaurant, products: dict):
        movement = StockService(db_session).record_movement(
            restaurant.id, products["coxinha"].id, MovementType.ADJUSTMENT, 7, reason="Inventory count"
        )
        assert movement.movement_type == MovementType.ADJUSTMENT
        assert movement.quantity == -13
        assert movement.stock_after == 7

    def test_sale_cannot_be_recorded_manually(self, db_session: Session, restaurant, products: dict):
        with pytest.raises(ValidationError):
            StockService(db_session).record_movement(
                restaurant.id, products["coxinha"].id, MovementType.SALE, 1
            )

    def test_unknown_product_raises_not_found(self, db_session: Session, restaurant):
        with pytest.raises(NotFoundError):
            StockService(db_session).record_movement(restaurant.id, 999, MovementType.ENTRY, 1)

    def test_set_stock_rejects_negative(self, db_session: Session, products: dict):
        with pytest.raises(ValidationError):
            StockService(db_session).set_stock(products["coxinha"], -1)

    def test_list_movements_newest_first(self, db_session: Session, restaurant, products: dict):
        service = StockService(db_session)
        service.record_movement(restaurant.id, products["suco"].id, MovementType.ENTRY, 1)
        service.record_movement(restaurant.id, products["suco"].id, MovementType.EXIT, 2)

        movements = service.list_movements(restaurant.id, products["suco"].id)
        assert [m.movement_type for m in movements] == [MovementType.EXIT, MovementType.ENTRY]
        assert movements[0].stock_after == 9


class TestBatchesAndProduction:
    def test_receive_batch_increments_stock(self, db_session: Session, restaurant, products: dict):
        service = StockService(db_session)
        batch = service.receive_batch(
            restaurant.id, products["suco"].id, "LOT-001", 12,
            unit_cost=Decimal("2.50"), supplier="Hortifruti Central",
            expiration_date=date(2030, 1, 31),
        )
        assert batch.id is not None
        assert service.get_product(restaurant.id, products["suco"].id).stock == 22

        movement = service.list_movements(restaurant.id, products["suco"].id)[0]
        assert movement.movement_type == MovementType.BATCH
        assert movement.reference == "LOT-001"

    def test_duplicate_batch_number_conflicts(self, db_session: Session, restaurant, products: dict):
        service = StockService(db_session)
        service.receive_batch(restaurant.id, products["suco"].id, "LOT-001", 12)
        with pytest.raises(ConflictError):
            service.receive_batch(restaurant.id, products["suco"].id, "LOT-001", 3)
        assert service.get_product(restaurant.id, products["suco"].id).stock == 22

    def test_same_batch_number_allowed_for_other_product(self, db_session: Session, restaurant, products: dict):
        service = StockService(db_session)
        service.receive_batch(restaurant.id, products["suco"].id, "LOT-001", 1)
        service.receive_batch(restaurant.id, products["kibe"].id, "LOT-001", 1)
        assert len(service.list_batches(restaurant.id)) == 2

    def test_record_production(self, db_session: Session, restaurant, products: dict):
        service = StockService(db_session)
        record = service.record_production(
            restaurant.id, products["coxinha"].id, 30, produced_by="Cozinha", notes="Fornada da manhã"
        )
        assert record.quantity == 30
        assert service.get_product(restaurant.id, products["coxinha"].id).stock == 50
        assert service.list_production(restaurant.id)[0].id == record.id


class TestLowStock:
    def test_low_stock_products(self, db_session: Session, restaurant, products: dict):
        service = StockService(db_session)
        assert service.low_stock_products(restaurant.id) == []

        service.record_movement(restaurant.id, products["kibe"].id, MovementType.EXIT, 1)
        names = [p.name for p in service.low_stock_products(restaurant.id)]
        assert "Kibe" in names
        assert "Coxinha" not in names
