"""
Payment ledger: apply, reverse and adjust box payments.

Every operation locks the CustomerCard row first and runs as one atomic
unit: payment row, slots, card counters, the three rollup rows, the customer
summary and the audit entry commit together or not at all.
"""
from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal, InvalidOperation, ROUND_FLOOR
from typing import Any

from django.contrib.auth.models import User
from django.db import transaction
from django.utils import timezone

from .audit import card_snapshot, log_audit_event
from .customer_sync import sync_customer_from_card
from .exceptions import ConflictError, InvariantViolation, NotFoundError, ValidationError
from .models import BoxPayment, CustomerCard, quantize_money
from .rollups import adjust_collection, record_collection, reverse_collection
from .slots import check_lowest_unchecked, release_payment_slots, uncheck_highest_owned

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")
# Largest value a max_digits=12, decimal_places=2 column holds.
MAX_AMOUNT = Decimal("9999999999.99")
PAYMENT_METHODS = frozenset(BoxPayment.Method.values)


def _parse_amount(value: Any, field: str) -> Decimal:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number.", field=field)
    try:
        amount = Decimal(str(value))
        if amount.is_finite():
            amount = quantize_money(amount)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"{field} must be a number.", field=field)
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a number.", field=field)
    if amount <= 0:
        raise ValidationError(f"{field} must be greater than zero.", field=field)
    if amount > MAX_AMOUNT:
        raise ValidationError(f"{field} is too large.", field=field, max_amount=MAX_AMOUNT)
    return amount


def _parse_box_count(value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError("boxes_to_check must be a whole number.", field="boxes_to_check")
    try:
        return int(str(value))
    except (TypeError, ValueError):
        raise ValidationError("boxes_to_check must be a whole number.", field="boxes_to_check")


def _boxes_for_amount(amount: Decimal, box_price: Decimal) -> int:
    return int((amount / box_price).to_integral_value(rounding=ROUND_FLOOR))


def _lock_card(customer_card_id: int) -> CustomerCard:
    customer_card = CustomerCard.objects.select_for_update().filter(pk=customer_card_id).first()
    if customer_card is None:
        raise NotFoundError("Customer card not found.", customer_card_id=customer_card_id)
    return customer_card


def _lock_payment(payment_id: int) -> tuple[CustomerCard, BoxPayment]:
    customer_card_id = BoxPayment.objects.filter(pk=payment_id).values_list("customer_card_id", flat=True).first()
    if customer_card_id is None:
        raise NotFoundError("Payment not found.", payment_id=payment_id)
    customer_card = _lock_card(customer_card_id)
    # Re-read under the card lock: a concurrent reversal may have removed it.
    payment = (
        BoxPayment.objects.select_for_update()
        .filter(pk=payment_id, customer_card=customer_card)
        .first()
    )
    if payment is None:
        raise NotFoundError("Payment not found.", payment_id=payment_id)
    return customer_card, payment


def _refresh_status(customer_card: CustomerCard) -> None:
    if customer_card.boxes_checked >= customer_card.total_boxes:
        customer_card.status = CustomerCard.Status.COMPLETED
    else:
        customer_card.status = CustomerCard.Status.ACTIVE


def _save_counters(customer_card: CustomerCard) -> None:
    customer_card.save(update_fields=["boxes_checked", "amount_paid", "amount_remaining", "status", "updated_at"])


def apply_payment(
    customer_card_id: int,
    *,
    amount_paid: Any = None,
    boxes_to_check: Any = None,
    method: str = BoxPayment.Method.CASH,
    notes: str | None = None,
    actor: User,
    payment_date: date | None = None,
) -> BoxPayment:
    """
    Record a payment and check off the boxes it covers.

    With ``amount_paid`` the box count is ``floor(amount / box_price)`` and the
    ledger keeps the amount exactly as given, remainder included. With
    ``boxes_to_check`` the amount is the boxes' price, capped at what is still
    owed; the payment that checks the last box settles the balance exactly.
    """
    if (amount_paid is None) == (boxes_to_check is None):
        raise ValidationError("Provide either amount_paid or boxes_to_check.")
    if actor is None:
        raise ValidationError("A collecting worker is required.", field="actor")
    method = str(method or BoxPayment.Method.CASH)
    if method not in PAYMENT_METHODS:
        raise ValidationError(f"Unknown payment method '{method}'.", field="method")

    amount = _parse_amount(amount_paid, "amount_paid") if amount_paid is not None else None
    requested_boxes = _parse_box_count(boxes_to_check) if boxes_to_check is not None else None
    payment_date = payment_date or timezone.localdate()

    with transaction.atomic():
        customer_card = _lock_card(customer_card_id)

        if amount is not None:
            if customer_card.box_price <= 0:
                raise InvariantViolation("Invalid box price calculation.", box_price=customer_card.box_price)
            boxes_n = _boxes_for_amount(amount, customer_card.box_price)
        else:
            boxes_n = requested_boxes

        if boxes_n <= 0:
            raise ValidationError(
                "Invalid number of boxes to check (amount too small or zero boxes).",
                boxes=boxes_n,
            )
        boxes_remaining = customer_card.boxes_remaining
        if boxes_n > boxes_remaining:
            raise ConflictError("Cannot check more boxes than remaining.", boxes_remaining=boxes_remaining)

        if amount is None:
            if boxes_n == boxes_remaining:
                amount = customer_card.amount_remaining
            else:
                amount = min(quantize_money(customer_card.box_price * boxes_n), customer_card.amount_remaining)
        if amount > customer_card.amount_remaining:
            raise ConflictError(
                "Payment amount exceeds remaining balance.",
                amount_remaining=customer_card.amount_remaining,
            )

        before = card_snapshot(customer_card)
        branch = customer_card.customer.branch

        payment = BoxPayment.objects.create(
            customer_card=customer_card,
            worker=actor,
            branch=branch,
            payment_date=payment_date,
            boxes_checked=boxes_n,
            amount_paid=amount,
            payment_method=method,
            notes=(notes or "").strip(),
        )
        box_numbers = check_lowest_unchecked(customer_card, boxes_n, payment=payment, checked_date=payment_date)

        customer_card.boxes_checked += boxes_n
        customer_card.amount_paid += amount
        customer_card.amount_remaining -= amount
        _refresh_status(customer_card)
        _save_counters(customer_card)

        record_collection(worker=actor, branch=branch, on_date=payment_date, amount=amount)
        sync_customer_from_card(customer_card, last_payment_date=payment_date)

        log_audit_event(
            actor=actor,
            action="payment.apply",
            reason="box_payment_recorded",
            object_type="BoxPayment",
            object_id=payment.id,
            branch=branch,
            before=before,
            after={
                **card_snapshot(customer_card),
                "customer_card_id": customer_card.id,
                "payment_amount": amount,
                "box_numbers": box_numbers,
                "payment_method": method,
            },
        )

    logger.info(
        "Payment %s applied to customer card %s: %s for boxes %s",
        payment.id,
        customer_card.id,
        amount,
        box_numbers,
    )
    return payment


def reverse_payment(payment_id: int, *, actor: User) -> CustomerCard:
    """Undo one payment completely and delete it from the ledger."""
    with transaction.atomic():
        customer_card, payment = _lock_payment(payment_id)
        before = card_snapshot(customer_card)
        amount = payment.amount_paid
        boxes = payment.boxes_checked

        released = release_payment_slots(payment)
        if released != boxes:
            logger.warning(
                "Payment %s recorded %s boxes but owned %s slots at reversal",
                payment_id,
                boxes,
                released,
            )

        customer_card.boxes_checked = max(0, customer_card.boxes_checked - boxes)
        customer_card.amount_paid = max(ZERO, customer_card.amount_paid - amount)
        customer_card.amount_remaining = customer_card.total_amount - customer_card.amount_paid
        _refresh_status(customer_card)
        _save_counters(customer_card)

        reverse_collection(
            worker=payment.worker,
            branch=payment.branch,
            on_date=payment.payment_date,
            amount=amount,
        )

        reversed_payment = {
            "customer_card_id": customer_card.id,
            "payment_amount": amount,
            "payment_boxes": boxes,
            "payment_date": payment.payment_date,
            "worker_id": payment.worker_id,
        }
        branch = payment.branch
        payment.delete()

        sync_customer_from_card(customer_card)

        log_audit_event(
            actor=actor,
            action="payment.reverse",
            reason="box_payment_reversed",
            object_type="BoxPayment",
            object_id=payment_id,
            branch=branch,
            before={**before, **reversed_payment},
            after=card_snapshot(customer_card),
        )

    logger.info("Payment %s reversed on customer card %s (%s, %s boxes)", payment_id, customer_card.id, amount, boxes)
    return customer_card


def adjust_payment(
    payment_id: int,
    *,
    new_amount: Any,
    notes: str | None = None,
    actor: User,
) -> BoxPayment:
    """
    Correct the amount of an existing payment in place.

    An increase claims the lowest-numbered unchecked boxes on the whole card,
    which can include boxes this payment never held. A decrease only releases
    boxes this payment owns, highest-numbered first.
    """
    new_amount = _parse_amount(new_amount, "new_amount")

    with transaction.atomic():
        customer_card, payment = _lock_payment(payment_id)
        old_amount = payment.amount_paid
        difference = new_amount - old_amount
        if difference == 0:
            raise InvariantViolation("New amount is the same as current amount.", amount=old_amount)
        if customer_card.box_price <= 0:
            raise InvariantViolation("Invalid box price calculation.", box_price=customer_card.box_price)

        box_difference = _boxes_for_amount(abs(difference), customer_card.box_price)
        before = {
            **card_snapshot(customer_card),
            "payment_amount": old_amount,
            "payment_boxes": payment.boxes_checked,
        }

        if difference > 0:
            if box_difference > customer_card.boxes_remaining:
                raise ConflictError("Not enough boxes remaining.", boxes_remaining=customer_card.boxes_remaining)
            if difference > customer_card.amount_remaining:
                raise ConflictError(
                    "Adjustment exceeds remaining balance.",
                    amount_remaining=customer_card.amount_remaining,
                )
            box_numbers = check_lowest_unchecked(
                customer_card,
                box_difference,
                payment=payment,
                checked_date=payment.payment_date,
            )
            shift = len(box_numbers)
        else:
            box_numbers = uncheck_highest_owned(payment, box_difference)
            if len(box_numbers) < box_difference:
                logger.warning(
                    "Payment %s owns %s checked boxes; decrease wanted %s",
                    payment_id,
                    len(box_numbers),
                    box_difference,
                )
            shift = -len(box_numbers)

        customer_card.boxes_checked = max(0, customer_card.boxes_checked + shift)
        customer_card.amount_paid += difference
        customer_card.amount_remaining -= difference
        _refresh_status(customer_card)
        _save_counters(customer_card)

        payment.amount_paid = new_amount
        payment.boxes_checked = max(0, payment.boxes_checked + shift)
        payment.adjusted_from = old_amount
        payment.adjusted_by = actor
        payment.adjusted_at = timezone.now()
        payment.adjustment_notes = (notes or "").strip()
        payment.save(
            update_fields=[
                "amount_paid",
                "boxes_checked",
                "adjusted_from",
                "adjusted_by",
                "adjusted_at",
                "adjustment_notes",
            ]
        )

        adjust_collection(
            worker=payment.worker,
            branch=payment.branch,
            on_date=payment.payment_date,
            difference=difference,
        )
        sync_customer_from_card(customer_card)

        log_audit_event(
            actor=actor,
            action="payment.adjust",
            reason="box_payment_adjusted",
            object_type="BoxPayment",
            object_id=payment.id,
            branch=payment.branch,
            before=before,
            after={
                **card_snapshot(customer_card),
                "payment_amount": new_amount,
                "payment_boxes": payment.boxes_checked,
                "difference": difference,
                "box_numbers": box_numbers,
            },
        )

    logger.info(
        "Payment %s adjusted %s -> %s on customer card %s (boxes %+d)",
        payment.id,
        old_amount,
        new_amount,
        customer_card.id,
        shift,
    )
    return payment
