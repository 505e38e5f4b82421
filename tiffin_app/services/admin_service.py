import logging

from ..models.schemas import AdminStats, CookingSummary, OrderStatus, OrderType
from .khata_service import subscribe_to_pending_payments
from .order_service import subscribe_to_orders

logger = logging.getLogger(__name__)


def cooking_summary(orders, menu_slot=None):
    """
    What the kitchen floor has to cook for one slot.

    Only CONFIRMED orders count; pending ones are not committed to production.
    Returns None when nothing is confirmed yet.
    """
    confirmed = [o for o in orders or [] if o.status == OrderStatus.CONFIRMED]
    if not confirmed:
        return None

    summary = CookingSummary()
    if menu_slot is not None and menu_slot.roti_sabzi is not None:
        summary.dish = menu_slot.roti_sabzi.base_dish

    for order in confirmed:
        qty = order.quantity or 1
        if order.type == OrderType.ROTI_SABZI:
            if 'Half' in (order.main_item or ''):
                summary.half_dabba += qty
            else:
                summary.full_dabba += qty
        else:
            summary.other += qty
            name = order.main_item or 'Unnamed'
            summary.breakdown[name] = summary.breakdown.get(name, 0) + qty

        for line in order.components_snapshot:
            if line.quantity > 0:
                summary.extras_breakdown[line.name] = summary.extras_breakdown.get(line.name, 0) + line.quantity

    return summary


def listen_to_admin_stats(store, kitchen_id, date_key, slot, on_change, on_error=None):
    """Dashboard counters for one date (and optionally one slot), kept live."""
    stats = AdminStats()

    def on_orders(orders):
        if slot:
            orders = [o for o in orders if o.slot == slot]
        stats.total_orders = len(orders)
        stats.pending_orders = sum(1 for o in orders if o.status == OrderStatus.PENDING)
        stats.students_today = len({o.user_id or o.phone_number for o in orders})
        on_change(stats.model_copy())

    def on_payments(payments):
        stats.pending_payments = len(payments)
        on_change(stats.model_copy())

    unsub_orders = subscribe_to_orders(store, kitchen_id, date_key, on_orders, on_error)
    unsub_payments = subscribe_to_pending_payments(store, kitchen_id, on_payments, on_error)
    logger.debug('Admin stats listening for kitchen %s on %s', kitchen_id, date_key)

    def unsubscribe():
        unsub_orders()
        unsub_payments()
    return unsubscribe
