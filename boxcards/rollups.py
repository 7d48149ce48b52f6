"""
Date-bucketed collection totals at worker, branch and company scope.

Sum fields (collections, payment counts) are running accumulators floored at
zero. Cardinality fields (active workers per branch, active branches per
company) are always recounted from the sibling rows of the same date, so
repeated or reversed events in one bucket cannot skew them. Keep the two
strategies separate per field if updates are ever batched.
"""
from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal

from django.contrib.auth.models import User

from .models import Branch, BranchDailyTotal, CompanyDailyTotal, WorkerDailyTotal

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


def _locked_bucket(model, **lookup):
    row, _ = model.objects.select_for_update().get_or_create(**lookup)
    return row


def count_active_workers(branch_id: int, on_date: date) -> int:
    return (
        WorkerDailyTotal.objects.filter(branch_id=branch_id, date=on_date, total_customers_paid__gt=0)
        .values("worker_id")
        .distinct()
        .count()
    )


def count_active_branches(company_id: int, on_date: date) -> int:
    return (
        BranchDailyTotal.objects.filter(branch__company_id=company_id, date=on_date, total_payments__gt=0)
        .values("branch_id")
        .distinct()
        .count()
    )


def _apply_delta(*, worker: User, branch: Branch, on_date: date, amount: Decimal, payments: int) -> None:
    # Lock order: worker -> branch -> company.
    worker_total = _locked_bucket(WorkerDailyTotal, worker=worker, branch=branch, date=on_date)
    worker_total.total_collections = max(ZERO, worker_total.total_collections + amount)
    worker_total.total_customers_paid = max(0, worker_total.total_customers_paid + payments)
    worker_total.save(update_fields=["total_collections", "total_customers_paid", "updated_at"])

    branch_total = _locked_bucket(BranchDailyTotal, branch=branch, date=on_date)
    branch_total.total_collections = max(ZERO, branch_total.total_collections + amount)
    branch_total.total_payments = max(0, branch_total.total_payments + payments)
    branch_total.total_workers_active = count_active_workers(branch.id, on_date)
    branch_total.save(
        update_fields=["total_collections", "total_payments", "total_workers_active", "updated_at"]
    )

    company_total = _locked_bucket(CompanyDailyTotal, company_id=branch.company_id, date=on_date)
    company_total.total_collections = max(ZERO, company_total.total_collections + amount)
    company_total.total_payments = max(0, company_total.total_payments + payments)
    company_total.total_branches_active = count_active_branches(branch.company_id, on_date)
    company_total.save(
        update_fields=["total_collections", "total_payments", "total_branches_active", "updated_at"]
    )

    logger.debug(
        "Rollups updated worker=%s branch=%s date=%s amount=%s payments=%+d",
        worker.pk,
        branch.pk,
        on_date,
        amount,
        payments,
    )


def record_collection(*, worker: User, branch: Branch, on_date: date, amount: Decimal) -> None:
    _apply_delta(worker=worker, branch=branch, on_date=on_date, amount=amount, payments=1)


def reverse_collection(*, worker: User, branch: Branch, on_date: date, amount: Decimal) -> None:
    _apply_delta(worker=worker, branch=branch, on_date=on_date, amount=-amount, payments=-1)


def adjust_collection(*, worker: User, branch: Branch, on_date: date, difference: Decimal) -> None:
    _apply_delta(worker=worker, branch=branch, on_date=on_date, amount=difference, payments=0)
