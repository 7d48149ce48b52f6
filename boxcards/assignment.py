from __future__ import annotations

import logging
from datetime import date

from django.contrib.auth.models import User
from django.db import transaction
from django.utils import timezone

from .audit import card_snapshot, log_audit_event
from .customer_sync import sync_customer_from_card
from .exceptions import ConflictError, InvariantViolation, LedgerError, NotFoundError, ValidationError
from .models import Card, Customer, CustomerCard, compute_box_price
from .reconciliation import reconcile_legacy_card
from .slots import create_slots

logger = logging.getLogger(__name__)


def assign_card(
    customer_id: int,
    card_id: int,
    *,
    assigned_date: date | None = None,
    actor: User | None = None,
) -> CustomerCard:
    """
    Bind a catalog card to a customer.

    Price and box count are copied from the catalog now and never re-read, so
    later catalog edits do not move an assigned card.
    """
    with transaction.atomic():
        customer = Customer.objects.select_for_update().filter(pk=customer_id).first()
        if customer is None:
            raise NotFoundError("Customer not found.", customer_id=customer_id)
        card = Card.objects.filter(pk=card_id).first()
        if card is None:
            raise NotFoundError("Card not found.", card_id=card_id)

        existing = CustomerCard.objects.filter(customer=customer, status=CustomerCard.Status.ACTIVE).first()
        if existing:
            raise ConflictError(
                "Customer already has an active card.",
                customer_id=customer.id,
                customer_card_id=existing.id,
            )

        total_boxes = int(card.number_of_boxes or 0)
        if total_boxes <= 0:
            raise ValidationError("Card must have at least one box.", card_id=card.id)
        box_price = compute_box_price(card.amount, total_boxes)
        if box_price <= 0:
            raise InvariantViolation("Card box price must be greater than zero.", card_id=card.id)

        customer_card = CustomerCard.objects.create(
            customer=customer,
            card=card,
            assigned_date=assigned_date or timezone.localdate(),
            assigned_by=actor,
            total_boxes=total_boxes,
            total_amount=card.amount,
            box_price=box_price,
            boxes_checked=0,
            amount_paid=0,
            amount_remaining=card.amount,
            status=CustomerCard.Status.ACTIVE,
        )
        create_slots(customer_card)
        sync_customer_from_card(customer_card)

        log_audit_event(
            actor=actor,
            action="card.assign",
            reason="customer_card_assigned",
            object_type="CustomerCard",
            object_id=customer_card.id,
            branch=customer.branch,
            before={},
            after={
                "customer_id": customer.id,
                "card_code": card.code,
                "total_boxes": total_boxes,
                "box_price": box_price,
                **card_snapshot(customer_card),
            },
        )

    logger.info(
        "Assigned card %s to customer %s as customer card %s (%s boxes at %s)",
        card.code,
        customer.id,
        customer_card.id,
        total_boxes,
        box_price,
    )
    return customer_card


def get_active_card(customer_id: int) -> CustomerCard:
    customer_card = (
        CustomerCard.objects.select_related("customer", "card")
        .filter(customer_id=customer_id, status=CustomerCard.Status.ACTIVE)
        .first()
    )
    if customer_card:
        return customer_card

    try:
        reconciled = reconcile_legacy_card(customer_id)
    except LedgerError as exc:
        logger.warning("Legacy reconciliation failed for customer %s: %s", customer_id, exc)
        raise NotFoundError("No active card found for this customer.", customer_id=customer_id) from exc

    if reconciled is not None and reconciled.status == CustomerCard.Status.ACTIVE:
        return reconciled
    raise NotFoundError("No active card found for this customer.", customer_id=customer_id)
