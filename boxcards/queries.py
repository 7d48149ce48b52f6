from __future__ import annotations

from datetime import date
from decimal import Decimal

from django.contrib.auth.models import User
from django.db.models import Count, DecimalField, Sum, Value
from django.db.models.functions import Coalesce
from django.utils import timezone

from .exceptions import NotFoundError
from .models import BoxPayment, BoxState, CustomerCard, quantize_money


def _money_sum(queryset) -> Decimal:
    total = queryset.aggregate(
        total=Coalesce(
            Sum("amount_paid"),
            Value(Decimal("0.00")),
            output_field=DecimalField(max_digits=14, decimal_places=2),
        )
    )["total"]
    return quantize_money(Decimal(total or 0))


def _ensure_card(customer_card_id: int) -> None:
    if not CustomerCard.objects.filter(pk=customer_card_id).exists():
        raise NotFoundError("Customer card not found.", customer_card_id=customer_card_id)


def get_box_states(customer_card_id: int) -> list[BoxState]:
    _ensure_card(customer_card_id)
    return list(BoxState.objects.filter(customer_card_id=customer_card_id).order_by("box_number"))


def get_payment_history(customer_card_id: int) -> list[BoxPayment]:
    """Payments on the card, newest first."""
    _ensure_card(customer_card_id)
    return list(
        BoxPayment.objects.filter(customer_card_id=customer_card_id)
        .select_related("worker", "adjusted_by")
        .order_by("-payment_date", "-created_at", "-id")
    )


def get_daily_sales(customer_card_id: int, on_date: date | None = None) -> Decimal:
    _ensure_card(customer_card_id)
    on_date = on_date or timezone.localdate()
    return _money_sum(BoxPayment.objects.filter(customer_card_id=customer_card_id, payment_date=on_date))


def get_worker_daily_sales(worker: User, on_date: date | None = None) -> dict:
    on_date = on_date or timezone.localdate()
    payments = BoxPayment.objects.filter(worker=worker, payment_date=on_date)
    return {
        "date": on_date,
        "total_sales": _money_sum(payments),
        "payments_count": payments.aggregate(count=Count("id"))["count"],
    }
