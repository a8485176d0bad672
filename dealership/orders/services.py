"""
Order lifecycle: creation, status changes and cancellation.

OrderProcessor keeps stock and car availability equal to the net effect of
every non-cancelled order. Each operation runs in a single
``transaction.atomic(using=...)`` block, so a failure part way through
leaves no stock decrement, car reservation or order row behind.
"""
import logging
import random
import time
from collections import defaultdict
from decimal import Decimal, InvalidOperation

from django.contrib.auth import get_user_model
from django.db import DEFAULT_DB_ALIAS, IntegrityError, transaction
from django.db.models import Count, Sum
from django.utils import timezone

from dealership.core.exceptions import (
    InvalidStateError, InvalidTransitionError, NotFoundError, ValidationError,
)
from dealership.core.utils import append_note, create_audit_log
from dealership.inventory.models import Car, SparePart
from dealership.inventory.services import StockLedger
from .models import Order, OrderItem, to_money

ORDER_TRANSITIONS = {
    Order.STATUS_PENDING: {
        Order.STATUS_PROCESSING, Order.STATUS_SHIPPED, Order.STATUS_DELIVERED, Order.STATUS_CANCELLED,
    },
    Order.STATUS_PROCESSING: {Order.STATUS_SHIPPED, Order.STATUS_DELIVERED, Order.STATUS_CANCELLED},
    Order.STATUS_SHIPPED: {Order.STATUS_DELIVERED, Order.STATUS_CANCELLED},
    Order.STATUS_DELIVERED: set(),
    Order.STATUS_CANCELLED: set(),
}

ORDER_STATUSES = {choice for choice, _ in Order.STATUS_CHOICES}
PAYMENT_STATUSES = {choice for choice, _ in Order.PAYMENT_STATUS_CHOICES}

PRICING_FIELDS = ('discount_amount', 'tax_amount', 'shipping_cost')
DETAIL_FIELDS = (
    'payment_method', 'shipping_address', 'billing_address', 'shipping_method',
    'estimated_delivery_date',
)

# Fresh order numbers drawn before a collision is reported
ORDER_NUMBER_ATTEMPTS = 5

# Orders counted as sold in statistics
FULFILLED_STATUSES = (Order.STATUS_SHIPPED, Order.STATUS_DELIVERED)


def can_transition(current, requested):
    return requested in ORDER_TRANSITIONS.get(current, set())


def generate_order_number():
    """ORD-<last 8 digits of epoch milliseconds>-<3 random digits>"""
    millis = str(int(time.time() * 1000))[-8:]
    return f"ORD-{millis}-{random.randint(0, 999):03d}"


def parse_amount(value, field):
    if value is None or value == '':
        return Decimal('0.00')
    try:
        amount = to_money(value)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f'{field} must be a decimal amount', field=field)
    if amount < 0:
        raise ValidationError(f'{field} cannot be negative', field=field)
    return amount


def parse_quantity(value, field='quantity'):
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError('Quantity must be a positive integer', field=field)
    return value


def order_totals(car_price, item_totals, discount_amount, tax_amount, shipping_cost):
    """Return (subtotal, total) for an order"""
    subtotal = to_money(car_price or 0) + sum((to_money(t) for t in item_totals), Decimal('0.00'))
    total = subtotal - to_money(discount_amount) + to_money(tax_amount) + to_money(shipping_cost)
    return to_money(subtotal), to_money(total)


class OrderProcessor:

    def __init__(self, using=None, logger=None, number_generator=None):
        self.using = using or DEFAULT_DB_ALIAS
        self.logger = logger or logging.getLogger(__name__)
        self.number_generator = number_generator or generate_order_number
        self.ledger = StockLedger(using=self.using, logger=self.logger)

    def _orders(self):
        return Order.objects.using(self.using)

    def _lock_order(self, order_id):
        order = self._orders().select_for_update().filter(pk=order_id).first()
        if order is None:
            raise NotFoundError(f'Order {order_id} not found')
        return order

    def _insert_order(self, **fields):
        """Create the order row, drawing a new number when the generated one is taken"""
        for attempt in range(1, ORDER_NUMBER_ATTEMPTS + 1):
            order_number = self.number_generator()
            try:
                with transaction.atomic(using=self.using):
                    return self._orders().create(order_number=order_number, **fields)
            except IntegrityError:
                taken = self._orders().filter(order_number=order_number).exists()
                if not taken or attempt == ORDER_NUMBER_ATTEMPTS:
                    raise
                self.logger.warning(f"Order number {order_number} already taken, drawing another")

    def get_order(self, order_id):
        order = self._orders().select_related('user', 'car').prefetch_related(
            'items__spare_part'
        ).filter(pk=order_id).first()
        if order is None:
            raise NotFoundError(f'Order {order_id} not found')
        return order

    # --- CreateOrder -------------------------------------------------------

    def create_order(self, user_id, car_id=None, items=(), pricing=None, actor=None, request=None, **details):
        """
        Create a PENDING order for a car and/or spare parts.

        ``items`` is a list of ``{'spare_part_id', 'quantity', 'unit_price'?,
        'discount'?, 'notes'?}``. ``pricing`` may carry discount_amount,
        tax_amount and shipping_cost. Remaining keyword arguments set
        payment and shipping details.
        """
        items = list(items or [])
        pricing = pricing or {}
        if not car_id and not items:
            raise ValidationError('Order must contain a car or at least one spare part', field='items')

        amounts = {field: parse_amount(pricing.get(field), field) for field in PRICING_FIELDS}
        lines = []
        for index, item in enumerate(items):
            part_id = item.get('spare_part_id')
            if not part_id:
                raise ValidationError(f'Item {index + 1} has no spare part', field='items')
            lines.append({
                'spare_part_id': part_id,
                'quantity': parse_quantity(item.get('quantity'), field='items'),
                'unit_price': item.get('unit_price'),
                'discount': parse_amount(item.get('discount'), 'discount'),
                'notes': item.get('notes') or '',
            })

        payment_status = details.pop('payment_status', None) or Order.PAYMENT_UNPAID
        if payment_status not in PAYMENT_STATUSES:
            raise ValidationError(f'Invalid payment status: {payment_status}', field='payment_status')
        order_fields = {k: v for k, v in details.items() if k in DETAIL_FIELDS and v is not None}
        notes = details.get('notes')

        User = get_user_model()
        if not User.objects.using(self.using).filter(pk=user_id).exists():
            raise NotFoundError(f'User {user_id} not found', field='user_id')

        with transaction.atomic(using=self.using):
            car = None
            if car_id:
                car = Car.objects.using(self.using).filter(pk=car_id).first()
                if car is None:
                    raise NotFoundError(f'Car {car_id} not found', field='car_id')

            part_ids = {line['spare_part_id'] for line in lines}
            parts = SparePart.objects.using(self.using).in_bulk(part_ids)
            missing = sorted(part_ids - set(parts))
            if missing:
                raise NotFoundError(f'Spare part {missing[0]} not found', field='items')

            item_totals = []
            for line in lines:
                part = parts[line['spare_part_id']]
                if line['unit_price'] is None or line['unit_price'] == '':
                    line['unit_price'] = to_money(part.price)
                else:
                    line['unit_price'] = parse_amount(line['unit_price'], 'unit_price')
                line_total = to_money(line['unit_price'] * line['quantity'] - line['discount'])
                if line_total < 0:
                    raise ValidationError(f'Discount exceeds the price of {part.name}', field='items')
                item_totals.append(line_total)

            subtotal, total = order_totals(
                car.price if car else None, item_totals,
                amounts['discount_amount'], amounts['tax_amount'], amounts['shipping_cost'],
            )
            if total < 0:
                raise ValidationError('Order total cannot be negative', field='discount_amount')

            quantities = defaultdict(int)
            for line in lines:
                quantities[line['spare_part_id']] += line['quantity']

            if car is not None:
                self.ledger.reserve_car(car.pk)
            self.ledger.reserve_parts(dict(quantities))

            order = self._insert_order(
                user_id=user_id,
                car=car,
                total_amount=total,
                status=Order.STATUS_PENDING,
                payment_status=payment_status,
                notes=append_note('', notes) if notes else '',
                **amounts,
                **order_fields
            )
            for line in lines:
                OrderItem(
                    order=order,
                    spare_part_id=line['spare_part_id'],
                    quantity=line['quantity'],
                    unit_price=line['unit_price'],
                    discount=line['discount'],
                    notes=line['notes'],
                ).save(using=self.using)

            create_audit_log(
                request=request,
                user=actor,
                action='order_create',
                model_name='Order',
                object_id=order.id,
                object_name=str(car) if car else f'{len(lines)} spare part line(s)',
                object_reference=order.order_number,
                changes={
                    'car_id': car.pk if car else None,
                    'items': {str(k): v for k, v in quantities.items()},
                    'subtotal': str(subtotal),
                    'total_amount': str(total),
                },
                using=self.using,
            )

        self.logger.info(f"Order created: {order.order_number} for user {user_id} (total {total})")
        return self.get_order(order.pk)

    # --- UpdateOrderStatus -------------------------------------------------

    def update_order_status(self, order_id, status=None, payment_status=None, tracking_number=None,
                            notes=None, actor=None, request=None):
        """
        Move an order along its lifecycle.

        Returns ``(order, changes)`` where changes maps ``status`` and/or
        ``payment_status`` to ``{'from': ..., 'to': ...}``.
        """
        if status is not None and status not in ORDER_STATUSES:
            raise ValidationError(f'Invalid status: {status}', field='status')
        if payment_status is not None and payment_status not in PAYMENT_STATUSES:
            raise ValidationError(f'Invalid payment status: {payment_status}', field='payment_status')

        changes = {}
        with transaction.atomic(using=self.using):
            order = self._lock_order(order_id)
            update_fields = []

            if status is not None and status != order.status:
                if not can_transition(order.status, status):
                    raise InvalidTransitionError(order.status, status)

                changes['status'] = {'from': order.status, 'to': status}
                if status == Order.STATUS_CANCELLED:
                    self._cancel(order, notes)
                    # Notes became the cancellation reason
                    notes = None
                else:
                    if status == Order.STATUS_DELIVERED:
                        if order.car_id:
                            self.ledger.sell_car(order.car_id)
                        order.actual_delivery_date = timezone.now()
                        update_fields.append('actual_delivery_date')
                    order.status = status
                update_fields += ['status', 'notes']

            if payment_status is not None and payment_status != order.payment_status:
                changes['payment_status'] = {'from': order.payment_status, 'to': payment_status}
                order.payment_status = payment_status
                update_fields.append('payment_status')

            if tracking_number is not None and tracking_number != order.tracking_number:
                order.tracking_number = tracking_number
                update_fields.append('tracking_number')

            if notes:
                order.notes = append_note(order.notes, notes)
                update_fields.append('notes')

            if update_fields:
                order.save(using=self.using, update_fields=sorted(set(update_fields)) + ['updated_at'])

            if changes:
                create_audit_log(
                    request=request,
                    user=actor,
                    action='order_status',
                    model_name='Order',
                    object_id=order.id,
                    object_reference=order.order_number,
                    changes=changes,
                    using=self.using,
                )

        if 'status' in changes:
            self.logger.info(
                f"Order {order.order_number} status: {changes['status']['from']} -> {changes['status']['to']}"
            )
        if 'payment_status' in changes:
            self.logger.info(
                f"Order {order.order_number} payment status: "
                f"{changes['payment_status']['from']} -> {changes['payment_status']['to']}"
            )
        return self.get_order(order.pk), changes

    # --- CancelOrder -------------------------------------------------------

    def cancel_order(self, order_id, reason=None, actor=None, request=None):
        with transaction.atomic(using=self.using):
            order = self._lock_order(order_id)
            if order.is_terminal:
                raise InvalidStateError(
                    f'Cannot cancel an order with status {order.status}',
                    field='status',
                )
            previous = order.status
            self._cancel(order, reason)
            order.save(using=self.using, update_fields=['status', 'notes', 'updated_at'])

            create_audit_log(
                request=request,
                user=actor,
                action='order_cancel',
                model_name='Order',
                object_id=order.id,
                object_reference=order.order_number,
                changes={
                    'status': {'from': previous, 'to': Order.STATUS_CANCELLED},
                    'reason': reason or 'No reason provided',
                },
                using=self.using,
            )

        self.logger.info(f"Order cancelled: {order.order_number} ({reason or 'No reason provided'})")
        return self.get_order(order.pk)

    def _cancel(self, order, reason):
        """Release what the order holds; caller saves the order"""
        order.status = Order.STATUS_CANCELLED
        order.notes = append_note(order.notes, reason or 'No reason provided', label='CANCELLED')

        if order.car_id and not self.ledger.release_car(order.car_id):
            self.logger.info(f"Car {order.car_id} of order {order.order_number} was not reserved, status left as is")

        quantities = {
            row['spare_part_id']: row['total']
            for row in OrderItem.objects.using(self.using).filter(
                order_id=order.pk, spare_part__isnull=False
            ).values('spare_part_id').annotate(total=Sum('quantity'))
        }
        if quantities:
            self.ledger.release_parts(quantities)

    # --- OrderStats --------------------------------------------------------

    def order_stats(self, date_from=None, date_to=None):
        """Counts, revenue and units sold, optionally within a date range (inclusive)"""
        orders = self._orders().all()
        if date_from:
            orders = orders.filter(created_at__date__gte=date_from)
        if date_to:
            orders = orders.filter(created_at__date__lte=date_to)

        total_orders = orders.count()

        by_status = {choice: 0 for choice, _ in Order.STATUS_CHOICES}
        for row in orders.values('status').annotate(count=Count('id')).order_by():
            by_status[row['status']] = row['count']

        by_payment_status = {choice: 0 for choice, _ in Order.PAYMENT_STATUS_CHOICES}
        for row in orders.values('payment_status').annotate(count=Count('id')).order_by():
            by_payment_status[row['payment_status']] = row['count']

        total_revenue = orders.filter(
            payment_status=Order.PAYMENT_PAID
        ).aggregate(total=Sum('total_amount'))['total'] or Decimal('0.00')

        cars_sold = orders.filter(car__isnull=False, status__in=FULFILLED_STATUSES).count()

        spare_parts_sold = OrderItem.objects.using(self.using).filter(
            order__in=orders.filter(status__in=FULFILLED_STATUSES)
        ).aggregate(total=Sum('quantity'))['total'] or 0

        avg_order_value = to_money(total_revenue / total_orders) if total_orders else Decimal('0.00')

        return {
            'total_orders': total_orders,
            'orders_by_status': by_status,
            'orders_by_payment_status': by_payment_status,
            'total_revenue': to_money(total_revenue),
            'cars_sold': cars_sold,
            'spare_parts_sold': spare_parts_sold,
            'avg_order_value': avg_order_value,
        }
