"""
One-off rebuild of card ledgers for customers created before cards were
tracked box by box.

Those customers only carry summary numbers (total_boxes, boxes_filled,
amount_paid). Reconciliation turns them into a CustomerCard with slots; the
first ``boxes_filled`` slots are marked checked on the customer's creation
date and belong to no payment. It only runs for customers that have no card
rows at all, so running it twice is a no-op.
"""
from __future__ import annotations

import logging
from decimal import Decimal

from django.contrib.auth.models import User
from django.db import transaction
from django.db.models import QuerySet
from django.utils import timezone

from .audit import card_snapshot, log_audit_event
from .customer_sync import sync_customer_from_card
from .exceptions import InvariantViolation, NotFoundError
from .models import Customer, CustomerCard, compute_box_price, quantize_money
from .slots import create_slots

logger = logging.getLogger(__name__)


def legacy_candidates() -> QuerySet:
    return Customer.objects.filter(card__isnull=False, customer_cards__isnull=True).order_by("id")


def needs_reconciliation(customer: Customer) -> bool:
    if not customer.card_id:
        return False
    return not CustomerCard.objects.filter(customer=customer).exists()


def reconcile_legacy_card(customer_id: int, *, actor: User | None = None) -> CustomerCard | None:
    with transaction.atomic():
        customer = Customer.objects.select_for_update().filter(pk=customer_id).first()
        if customer is None:
            raise NotFoundError("Customer not found.", customer_id=customer_id)
        if not needs_reconciliation(customer):
            return None

        catalog = customer.card
        total_boxes = int(customer.total_boxes or catalog.number_of_boxes or 0)
        total_amount = quantize_money(Decimal(customer.total_amount or catalog.amount or 0))
        box_price = compute_box_price(total_amount, total_boxes)
        if total_boxes <= 0 or box_price <= 0:
            raise InvariantViolation(
                "Legacy customer record has no usable box pricing.",
                customer_id=customer.id,
                total_boxes=total_boxes,
                total_amount=total_amount,
            )

        boxes_filled = min(int(customer.boxes_filled or 0), total_boxes)
        amount_paid = min(quantize_money(Decimal(customer.amount_paid or 0)), total_amount)
        created_on = timezone.localdate(customer.created_at)
        status = CustomerCard.Status.COMPLETED if boxes_filled >= total_boxes else CustomerCard.Status.ACTIVE
        legacy = {
            "total_boxes": customer.total_boxes,
            "boxes_filled": customer.boxes_filled,
            "amount_paid": customer.amount_paid,
            "total_amount": customer.total_amount,
        }

        customer_card = CustomerCard.objects.create(
            customer=customer,
            card=catalog,
            assigned_date=created_on,
            assigned_by=customer.worker,
            total_boxes=total_boxes,
            total_amount=total_amount,
            box_price=box_price,
            boxes_checked=boxes_filled,
            amount_paid=amount_paid,
            amount_remaining=total_amount - amount_paid,
            status=status,
        )
        create_slots(customer_card, checked_count=boxes_filled, checked_date=created_on)
        sync_customer_from_card(customer_card)

        log_audit_event(
            actor=actor,
            action="card.reconcile",
            reason="legacy_customer_progress",
            object_type="CustomerCard",
            object_id=customer_card.id,
            branch=customer.branch,
            before=legacy,
            after=card_snapshot(customer_card),
        )

    logger.info(
        "Reconciled legacy customer %s into customer card %s (%s/%s boxes)",
        customer.id,
        customer_card.id,
        boxes_filled,
        total_boxes,
    )
    return customer_card
