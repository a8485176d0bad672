"""
Cache invalidation signals
Drop cached dashboard figures whenever the data behind them changes
"""
from django.db import transaction
from django.db.models.signals import post_save, post_delete
from django.dispatch import receiver
import logging

from dealership.core.cache_utils import invalidate_dashboard_cache
from dealership.inventory.models import Car, SparePart, StockAdjustment
from dealership.orders.models import Order
from dealership.workshop.models import Service

logger = logging.getLogger(__name__)

TRACKED_MODELS = (Order, Car, SparePart, StockAdjustment, Service)


def invalidate_dashboard_cache_manual():
    """Manually invalidate dashboard cache"""
    try:
        invalidate_dashboard_cache()
        logger.debug("Invalidated dashboard cache (Manual/Signal)")
    except Exception as e:
        logger.warning(f"Error invalidating dashboard cache: {e}")


@receiver([post_save, post_delete])
def invalidate_dashboard_on_change(sender, instance, using=None, **kwargs):
    """Invalidate dashboard cache when orders, inventory or services change"""
    if sender not in TRACKED_MODELS:
        return
    # Run after commit so a concurrent reader cannot refill the cache with pre-commit data
    transaction.on_commit(invalidate_dashboard_cache_manual, using=using)
