from __future__ import annotations

from datetime import date

from .models import Customer, CustomerCard

CARD_TO_CUSTOMER_STATUS = {
    CustomerCard.Status.ACTIVE.value: Customer.Status.IN_PROGRESS.value,
    CustomerCard.Status.COMPLETED.value: Customer.Status.COMPLETED.value,
}


def sync_customer_from_card(customer_card: CustomerCard, *, last_payment_date: date | None = None) -> Customer:
    """
    Mirror card progress onto the customer row used by list and search screens.

    Runs inside the caller's transaction; a failed save aborts the whole
    ledger operation.
    """
    customer = customer_card.customer
    customer.card_id = customer_card.card_id
    customer.total_boxes = customer_card.total_boxes
    customer.total_amount = customer_card.total_amount
    customer.price_per_box = customer_card.box_price
    customer.boxes_filled = customer_card.boxes_checked
    customer.amount_paid = customer_card.amount_paid
    customer.status = CARD_TO_CUSTOMER_STATUS[str(customer_card.status)]
    update_fields = [
        "card",
        "total_boxes",
        "total_amount",
        "price_per_box",
        "boxes_filled",
        "amount_paid",
        "status",
        "updated_at",
    ]
    if last_payment_date is not None:
        customer.last_payment_date = last_payment_date
        update_fields.append("last_payment_date")
    customer.save(update_fields=update_fields)
    return customer
