"""
Inventory signals.

``low_stock`` is advisory: it is sent once the transaction holding a
stock adjustment commits, when that adjustment left a spare part at or
below its minimum level. Receivers get ``spare_part``,
``stock`` and ``using`` keyword arguments.
"""
import django.dispatch

low_stock = django.dispatch.Signal()
