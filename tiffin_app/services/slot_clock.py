"""
Meal slot clock.

Resolves which configured slot is current and which business date an order
or menu is filed under. Times are zero-padded 24h ``HH:MM`` strings compared
lexicographically; ``now`` is a naive local datetime (kitchen and students
share one locale).
"""
import re
from datetime import datetime, timedelta

_HHMM = re.compile(r'^([01]\d|2[0-3]):[0-5]\d$')


def is_valid_hhmm(value):
    return isinstance(value, str) and bool(_HHMM.match(value))


def _hhmm(now: datetime) -> str:
    return now.strftime('%H:%M')


def business_date_key(now: datetime) -> str:
    return now.strftime('%Y-%m-%d')


def shift_date_key(key: str, days: int) -> str:
    return (datetime.strptime(key, '%Y-%m-%d') + timedelta(days=days)).strftime('%Y-%m-%d')


def _active_slots(kitchen):
    """Active (slot_id, config) pairs sorted by start time."""
    slots = getattr(kitchen, 'meal_slots', None) or {}
    active = [(slot_id, cfg) for slot_id, cfg in slots.items() if cfg.active]
    return sorted(active, key=lambda item: item[1].start)


def is_past_all_active_slots(kitchen, now: datetime) -> bool:
    active = _active_slots(kitchen)
    if not active:
        return False
    latest_end = max(cfg.end for _, cfg in active)
    return _hhmm(now) > latest_end


def effective_menu_date_key(kitchen, now: datetime) -> str:
    today = business_date_key(now)
    if is_past_all_active_slots(kitchen, now):
        return shift_date_key(today, 1)
    return today


def effective_meal_slot(kitchen, now: datetime):
    """
    The single slot a focused view should show.

    Overlapping windows resolve to the slot that started most recently. Once
    every slot has ended the first slot of the day is reported so a closed
    kitchen still has a context to display.
    """
    active = _active_slots(kitchen)
    if not active:
        return None
    t = _hhmm(now)

    in_window = [slot_id for slot_id, cfg in active if cfg.start <= t <= cfg.end]
    if in_window:
        return in_window[-1]

    upcoming = [slot_id for slot_id, cfg in active if t < cfg.start]
    if upcoming:
        return upcoming[0]

    return active[0][0]


def available_slots_for_ordering(kitchen, now: datetime):
    t = _hhmm(now)
    return [slot_id for slot_id, cfg in _active_slots(kitchen) if t <= cfg.end]


def slot_date_key(slot_id, kitchen, now: datetime) -> str:
    today = business_date_key(now)
    slots = getattr(kitchen, 'meal_slots', None) or {}
    cfg = slots.get(slot_id)
    if cfg is None:
        return today
    return today if _hhmm(now) <= cfg.end else shift_date_key(today, 1)
