import asyncio
from datetime import datetime

import pytest

from tiffin_app.models.schemas import PaymentStatus
from tiffin_app.services.errors import StoreError
from tiffin_app.services.khata_service import (
    get_student_balance,
    payments_path,
    process_payment,
    record_cash_payment,
    submit_payment,
    subscribe_to_pending_payments,
)
from tiffin_app.services.order_service import place_manual_order, place_order

NOON = datetime(2026, 3, 10, 12, 5)


@pytest.fixture
def order_for(store, lunch_kitchen, full_dabba):
    async def place(amount, **extra):
        draft = {**full_dabba, 'total_amount': amount, **extra}
        res = await place_order(store, lunch_kitchen, draft, now=NOON)
        assert res.success
        return res.id
    return place


@pytest.mark.asyncio
async def test_balance_with_no_activity(store):
    summary = await get_student_balance(store, 'k1', 'stu-1')
    assert summary.balance == 0
    assert summary.orders == []
    assert summary.error is None


@pytest.mark.asyncio
async def test_orders_debit_and_accepted_payments_credit(store, order_for):
    await order_for(160)
    await order_for(80)
    await record_cash_payment(store, 'k1', 'stu-1', 100, recorded_by='admin-1')

    summary = await get_student_balance(store, 'k1', 'stu-1')
    assert summary.total_orders == 240
    assert summary.total_paid == 100
    assert summary.balance == 140


@pytest.mark.asyncio
async def test_balance_is_repeatable_and_moves_by_exact_amounts(store, order_for):
    await order_for(160)
    before = (await get_student_balance(store, 'k1', 'stu-1')).balance
    assert (await get_student_balance(store, 'k1', 'stu-1')).balance == before

    await record_cash_payment(store, 'k1', 'stu-1', 45.5, recorded_by='admin-1')
    after_payment = (await get_student_balance(store, 'k1', 'stu-1')).balance
    assert after_payment == before - 45.5

    await order_for(70)
    assert (await get_student_balance(store, 'k1', 'stu-1')).balance == after_payment + 70


@pytest.mark.asyncio
async def test_pending_and_rejected_payments_do_not_count(store, order_for):
    await order_for(160)
    pending = (await submit_payment(store, 'k1', 'stu-1', 100, 'UPI', receipt_url='receipts/1.jpg')).id
    rejected = (await submit_payment(store, 'k1', 'stu-1', 60, 'upi')).id
    await process_payment(store, 'k1', rejected, 'rejected')

    summary = await get_student_balance(store, 'k1', 'stu-1')
    assert summary.balance == 160
    assert [p.id for p in summary.pending_payments] == [pending]
    assert [p.id for p in summary.rejected_payments] == [rejected]
    assert summary.payments == []


@pytest.mark.asyncio
async def test_accepting_a_payment_reduces_balance(store, order_for):
    await order_for(160)
    payment_id = (await submit_payment(store, 'k1', 'stu-1', 100)).id

    res = await process_payment(store, 'k1', payment_id, PaymentStatus.ACCEPTED)
    assert res.success
    doc = await store.get_one(f'{payments_path("k1")}/{payment_id}')
    assert doc['processed_at'] is not None
    assert (await get_student_balance(store, 'k1', 'stu-1')).balance == 60


@pytest.mark.asyncio
async def test_trial_orders_are_excluded(store, order_for):
    await order_for(160)
    await order_for(500, is_trial=True)

    summary = await get_student_balance(store, 'k1', 'stu-1')
    assert summary.total_orders == 160
    assert len(summary.orders) == 1


@pytest.mark.asyncio
async def test_decided_payments_are_terminal(store):
    payment_id = (await submit_payment(store, 'k1', 'stu-1', 100)).id
    assert (await process_payment(store, 'k1', payment_id, 'accepted')).success

    res = await process_payment(store, 'k1', payment_id, 'rejected')
    assert not res.success
    assert res.error_type == 'InvalidStatusTransition'


@pytest.mark.asyncio
async def test_concurrent_decisions_settle_a_payment_once(yielding_store):
    payment_id = (await submit_payment(yielding_store, 'k1', 'stu-1', 100)).id

    accepted, rejected = await asyncio.gather(
        process_payment(yielding_store, 'k1', payment_id, 'accepted'),
        process_payment(yielding_store, 'k1', payment_id, 'rejected'),
    )
    assert accepted.success
    assert rejected.error_type == 'InvalidStatusTransition'
    summary = await get_student_balance(yielding_store, 'k1', 'stu-1')
    assert summary.total_paid == 100
    assert summary.rejected_payments == []


@pytest.mark.asyncio
async def test_payment_decision_must_be_accept_or_reject(store):
    payment_id = (await submit_payment(store, 'k1', 'stu-1', 100)).id
    for decision in ('pending', 'refunded'):
        res = await process_payment(store, 'k1', payment_id, decision)
        assert res.error_type == 'PaymentValidationError'


@pytest.mark.asyncio
@pytest.mark.parametrize('amount', [0, -10, 'lots', None])
async def test_payment_amount_must_be_positive(store, amount):
    res = await submit_payment(store, 'k1', 'stu-1', amount)
    assert not res.success
    assert res.error_type == 'PaymentValidationError'
    assert await store.get(payments_path('k1')) == []


@pytest.mark.asyncio
async def test_unknown_payment_method(store):
    res = await submit_payment(store, 'k1', 'stu-1', 50, method='CHEQUE')
    assert res.error_type == 'PaymentValidationError'


@pytest.mark.asyncio
async def test_history_marks_what_moved_the_balance(store, order_for):
    await order_for(160)
    await submit_payment(store, 'k1', 'stu-1', 100)
    await record_cash_payment(store, 'k1', 'stu-1', 50, recorded_by='admin-1')

    history = (await get_student_balance(store, 'k1', 'stu-1')).history
    assert [(e.kind, e.counted) for e in history] == [
        ('payment', True),
        ('payment', False),
        ('order', True),
    ]
    assert history[0].label == 'CASH payment'


@pytest.mark.asyncio
async def test_phone_only_manual_orders_join_the_khata(store, lunch_kitchen, full_dabba, order_for):
    await order_for(160)
    await place_manual_order(
        store, lunch_kitchen, {**full_dabba, 'user_id': None, 'phone_number': '9999999999', 'total_amount': 80},
        recorded_by='admin-1', now=NOON,
    )
    assert (await get_student_balance(store, 'k1', 'stu-1')).balance == 160
    assert (await get_student_balance(store, 'k1', 'stu-1', phone_number='9999999999')).balance == 240


@pytest.mark.asyncio
async def test_phone_only_khata_is_limited_to_that_phone(store, lunch_kitchen, full_dabba):
    for phone, amount in (('1111111111', 80), ('2222222222', 500)):
        await place_manual_order(
            store, lunch_kitchen, {**full_dabba, 'user_id': None, 'phone_number': phone, 'total_amount': amount},
            recorded_by='admin-1', now=NOON,
        )
    await record_cash_payment(store, 'k1', 'stu-1', 30, recorded_by='admin-1')

    summary = await get_student_balance(store, 'k1', None, phone_number='1111111111')
    assert summary.balance == 80
    assert [o.phone_number for o in summary.orders] == ['1111111111']
    assert summary.total_paid == 0


@pytest.mark.asyncio
async def test_balance_without_identity_is_empty(store, lunch_kitchen, full_dabba):
    await place_manual_order(
        store, lunch_kitchen, {**full_dabba, 'user_id': None, 'phone_number': '1111111111'},
        recorded_by='admin-1', now=NOON,
    )
    summary = await get_student_balance(store, 'k1', None)
    assert summary.balance == 0
    assert summary.orders == []


@pytest.mark.asyncio
async def test_read_failure_reports_error(store, monkeypatch):
    async def broken(*args, **kwargs):
        raise StoreError('deadline exceeded')
    monkeypatch.setattr(store, 'get', broken)

    summary = await get_student_balance(store, 'k1', 'stu-1')
    assert summary.error == 'deadline exceeded'
    assert summary.balance == 0


@pytest.mark.asyncio
async def test_pending_payment_feed(store):
    seen = []
    unsubscribe = subscribe_to_pending_payments(store, 'k1', seen.append)
    payment_id = (await submit_payment(store, 'k1', 'stu-1', 100)).id
    assert [p.id for p in seen[-1]] == [payment_id]

    await process_payment(store, 'k1', payment_id, 'accepted')
    assert seen[-1] == []
    unsubscribe()
