"""
Stock and car availability bookkeeping.

StockLedger is the only code that writes SparePart.stock or moves a car
between AVAILABLE, RESERVED and SOLD. Every write is a conditional UPDATE
so that a stale read can never push stock below zero or reserve a car twice.
Callers that combine several ledger calls wrap them in their own
``transaction.atomic(using=...)`` block.
"""
import logging

from django.db import DEFAULT_DB_ALIAS, transaction
from django.db.models import F
from django.utils import timezone

from dealership.core.exceptions import (
    ConflictError, InsufficientStockError, NotFoundError, ValidationError,
)
from dealership.core.utils import create_audit_log
from .models import Car, SparePart, StockAdjustment
from .signals import low_stock

ADJUST_OPERATIONS = (StockAdjustment.OPERATION_ADD, StockAdjustment.OPERATION_SUBTRACT)


class StockLedger:

    def __init__(self, using=None, logger=None):
        self.using = using or DEFAULT_DB_ALIAS
        self.logger = logger or logging.getLogger(__name__)

    def _parts(self):
        return SparePart.objects.using(self.using)

    def _cars(self):
        return Car.objects.using(self.using)

    # --- Spare parts -------------------------------------------------------

    def reserve_parts(self, quantities):
        """
        Take ``{spare_part_id: quantity}`` out of stock.

        Rows are decremented in ascending id order. The first part that
        cannot cover its quantity raises; the enclosing transaction is
        expected to undo earlier decrements.
        """
        with transaction.atomic(using=self.using):
            for part_id in sorted(quantities):
                quantity = quantities[part_id]
                updated = self._parts().filter(pk=part_id, stock__gte=quantity).update(
                    stock=F('stock') - quantity,
                    updated_at=timezone.now(),
                )
                if updated:
                    continue

                part = self._parts().filter(pk=part_id).first()
                if part is None:
                    raise NotFoundError(f'Spare part {part_id} not found', field='items')
                raise InsufficientStockError(
                    f'Insufficient stock for {part.name}: {part.stock} available, {quantity} requested',
                    field='items',
                    available=part.stock,
                    requested=quantity,
                )

    def release_parts(self, quantities):
        """Put ``{spare_part_id: quantity}`` back into stock"""
        with transaction.atomic(using=self.using):
            for part_id in sorted(quantities):
                quantity = quantities[part_id]
                # Restock soft-deleted parts too, counts must stay consistent
                updated = SparePart.all_objects.using(self.using).filter(pk=part_id).update(
                    stock=F('stock') + quantity,
                    updated_at=timezone.now(),
                )
                if not updated:
                    self.logger.warning(f"Cannot restock spare part {part_id}: row no longer exists")

    def adjust_stock(self, spare_part_id, quantity, operation, reason=None, actor=None, request=None):
        """
        Apply a manual stock adjustment and record it.

        Returns a dict with the part, previous and new stock, the signed
        adjustment, the reason and a low stock flag.
        """
        if operation not in ADJUST_OPERATIONS:
            raise ValidationError("Operation must be 'add' or 'subtract'", field='operation')
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValidationError('Quantity must be a positive integer', field='quantity')

        delta = quantity if operation == StockAdjustment.OPERATION_ADD else -quantity

        with transaction.atomic(using=self.using):
            part = self._parts().select_for_update().filter(pk=spare_part_id).first()
            if part is None:
                raise NotFoundError(f'Spare part {spare_part_id} not found')

            queryset = self._parts().filter(pk=part.pk)
            if delta < 0:
                queryset = queryset.filter(stock__gte=quantity)
            updated = queryset.update(stock=F('stock') + delta, updated_at=timezone.now())
            part.refresh_from_db(using=self.using, fields=['stock', 'updated_at'])
            if not updated:
                raise InsufficientStockError(
                    f'Cannot subtract {quantity} from {part.name}: only {part.stock} in stock',
                    field='quantity',
                    available=part.stock,
                    requested=quantity,
                )

            new_stock = part.stock
            previous_stock = new_stock - delta

            adjustment = StockAdjustment.objects.using(self.using).create(
                spare_part=part,
                operation=operation,
                quantity=quantity,
                previous_stock=previous_stock,
                new_stock=new_stock,
                reason=reason or '',
                created_by=actor if actor is not None and actor.is_authenticated else None,
            )

            signed = f'+{quantity}' if delta > 0 else f'-{quantity}'
            create_audit_log(
                request=request,
                user=actor,
                action='stock_adjust',
                model_name='SparePart',
                object_id=part.id,
                object_name=part.name,
                object_reference=part.part_number,
                changes={
                    'operation': operation,
                    'quantity': quantity,
                    'previous_stock': previous_stock,
                    'new_stock': new_stock,
                    'reason': reason,
                },
                using=self.using,
            )

        self.logger.info(f"Stock adjusted for {part.part_number}: {previous_stock} -> {new_stock} ({signed})")

        is_low = new_stock <= part.min_stock_level
        if is_low:
            self.logger.warning(
                f"Low stock: {part.name} ({part.part_number}) at {new_stock}, minimum {part.min_stock_level}"
            )
            transaction.on_commit(
                lambda: low_stock.send(sender=SparePart, spare_part=part, stock=new_stock, using=self.using),
                using=self.using,
            )

        return {
            'spare_part': part,
            'adjustment_id': adjustment.id,
            'previous_stock': previous_stock,
            'new_stock': new_stock,
            'adjustment': signed,
            'reason': reason or '',
            'low_stock': is_low,
        }

    def low_stock_parts(self):
        """Parts at or below their minimum, furthest below first"""
        return self._parts().filter(
            stock__lte=F('min_stock_level')
        ).annotate(
            shortfall=F('stock') - F('min_stock_level')
        ).order_by('shortfall', 'name')

    # --- Cars --------------------------------------------------------------

    def reserve_car(self, car_id):
        """AVAILABLE -> RESERVED, or raise if the car cannot be reserved"""
        updated = self._cars().filter(pk=car_id, status=Car.STATUS_AVAILABLE).update(
            status=Car.STATUS_RESERVED,
            updated_at=timezone.now(),
        )
        if updated:
            return
        car = self._cars().filter(pk=car_id).first()
        if car is None:
            raise NotFoundError(f'Car {car_id} not found', field='car_id')
        raise ConflictError(f'Car is not available for purchase (status: {car.status})', field='car_id')

    def release_car(self, car_id):
        """RESERVED -> AVAILABLE. Returns False when the car was not reserved."""
        updated = Car.all_objects.using(self.using).filter(pk=car_id, status=Car.STATUS_RESERVED).update(
            status=Car.STATUS_AVAILABLE,
            updated_at=timezone.now(),
        )
        return bool(updated)

    def sell_car(self, car_id):
        """RESERVED -> SOLD. Returns False when the car was not reserved."""
        updated = Car.all_objects.using(self.using).filter(pk=car_id, status=Car.STATUS_RESERVED).update(
            status=Car.STATUS_SOLD,
            updated_at=timezone.now(),
        )
        if not updated:
            self.logger.warning(f"Car {car_id} was not reserved when its order was delivered")
        return bool(updated)
