"""
Box slot ledger.

Slot selection order is fixed: new money always claims the lowest-numbered
unchecked slots, and an adjustment that lowers a payment releases the
highest-numbered slots that payment owns. Box colouring by payment relies on
both rules.
"""
from __future__ import annotations

from datetime import date

from .exceptions import InvariantViolation
from .models import BoxPayment, BoxState, CustomerCard


def create_slots(customer_card: CustomerCard, *, checked_count: int = 0, checked_date: date | None = None) -> list[BoxState]:
    checked_count = max(0, min(int(checked_count or 0), customer_card.total_boxes))
    slots = [
        BoxState(
            customer_card=customer_card,
            box_number=number,
            is_checked=number <= checked_count,
            checked_date=checked_date if number <= checked_count else None,
        )
        for number in range(1, customer_card.total_boxes + 1)
    ]
    return BoxState.objects.bulk_create(slots)


def check_lowest_unchecked(
    customer_card: CustomerCard,
    count: int,
    *,
    payment: BoxPayment,
    checked_date: date,
) -> list[int]:
    if count <= 0:
        return []
    rows = list(
        BoxState.objects.select_for_update()
        .filter(customer_card=customer_card, is_checked=False)
        .order_by("box_number")
        .values_list("id", "box_number")[:count]
    )
    if len(rows) < count:
        raise InvariantViolation(
            "Box slots are out of step with the card counters.",
            customer_card_id=customer_card.id,
            requested=count,
            available=len(rows),
        )
    BoxState.objects.filter(id__in=[row_id for row_id, _ in rows]).update(
        is_checked=True,
        checked_date=checked_date,
        payment=payment,
    )
    return [number for _, number in rows]


def uncheck_highest_owned(payment: BoxPayment, count: int) -> list[int]:
    if count <= 0:
        return []
    rows = list(
        BoxState.objects.select_for_update()
        .filter(payment=payment, is_checked=True)
        .order_by("-box_number")
        .values_list("id", "box_number")[:count]
    )
    BoxState.objects.filter(id__in=[row_id for row_id, _ in rows]).update(
        is_checked=False,
        checked_date=None,
        payment=None,
    )
    return [number for _, number in rows]


def release_payment_slots(payment: BoxPayment) -> int:
    return BoxState.objects.filter(payment=payment).update(
        is_checked=False,
        checked_date=None,
        payment=None,
    )
