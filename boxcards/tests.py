import threading
from datetime import timedelta
from decimal import Decimal
from io import StringIO
from unittest.mock import patch

from django.contrib.auth.models import User
from django.core.management import call_command
from django.db import connection
from django.db.models import Sum
from django.test import TestCase, TransactionTestCase, override_settings, skipUnlessDBFeature
from django.urls import reverse
from django.utils import timezone

from .assignment import assign_card, get_active_card
from .exceptions import ConflictError, InvariantViolation, NotFoundError, ValidationError
from .models import (
    AuditLog,
    BoxPayment,
    BoxState,
    Branch,
    BranchDailyTotal,
    Card,
    Company,
    CompanyDailyTotal,
    Customer,
    CustomerCard,
    UserProfile,
    WorkerDailyTotal,
)
from .payments import adjust_payment, apply_payment, reverse_payment
from .queries import get_box_states, get_daily_sales, get_payment_history, get_worker_daily_sales
from .rollups import reverse_collection


def make_worker(username, branch, role=UserProfile.Roles.WORKER):
    user = User.objects.create_user(username=username, password="pass12345")
    UserProfile.objects.update_or_create(user=user, defaults={"role": role, "branch": branch})
    return user


def make_customer(name, branch, worker, phone="0241234567", **extra):
    return Customer.objects.create(name=name, phone=phone, branch=branch, worker=worker, **extra)


def slot_snapshot(customer_card):
    return list(
        BoxState.objects.filter(customer_card=customer_card)
        .order_by("box_number")
        .values_list("box_number", "is_checked", "checked_date", "payment_id")
    )


class LedgerTestMixin:
    def create_fixtures(self):
        self.company = Company.objects.create(name="Susu Savings", code="SUSU")
        self.branch = Branch.objects.create(company=self.company, name="Madina", code="MAD")
        self.worker = make_worker("collector", self.branch)
        self.catalog = Card.objects.create(name="Ten Box", number_of_boxes=10, amount=Decimal("100.00"))
        self.customer = make_customer("Ama Mensah", self.branch, self.worker)
        self.today = timezone.localdate()

    def assert_ledger_invariants(self, customer_card):
        customer_card.refresh_from_db()
        checked_slots = BoxState.objects.filter(customer_card=customer_card, is_checked=True).count()
        payment_boxes = (
            BoxPayment.objects.filter(customer_card=customer_card).aggregate(total=Sum("boxes_checked"))["total"]
            or 0
        )
        self.assertEqual(customer_card.boxes_checked, checked_slots)
        self.assertEqual(customer_card.boxes_checked, payment_boxes)
        self.assertEqual(customer_card.amount_remaining, customer_card.total_amount - customer_card.amount_paid)
        self.assertGreaterEqual(customer_card.amount_remaining, 0)
        expected_status = (
            CustomerCard.Status.COMPLETED
            if customer_card.boxes_checked >= customer_card.total_boxes
            else CustomerCard.Status.ACTIVE
        )
        self.assertEqual(customer_card.status, expected_status)


class CardAssignmentTests(LedgerTestMixin, TestCase):
    def setUp(self):
        self.create_fixtures()

    def test_assign_snapshots_catalog_and_creates_unchecked_slots(self):
        customer_card = assign_card(self.customer.id, self.catalog.id, actor=self.worker)

        self.assertEqual(customer_card.total_boxes, 10)
        self.assertEqual(customer_card.total_amount, Decimal("100.00"))
        self.assertEqual(customer_card.box_price, Decimal("10.000000"))
        self.assertEqual(customer_card.amount_remaining, Decimal("100.00"))
        self.assertEqual(customer_card.status, CustomerCard.Status.ACTIVE)
        self.assertEqual(customer_card.assigned_date, self.today)

        slots = get_box_states(customer_card.id)
        self.assertEqual([slot.box_number for slot in slots], list(range(1, 11)))
        self.assertFalse(any(slot.is_checked for slot in slots))
        self.assert_ledger_invariants(customer_card)

    def test_assign_syncs_customer_summary(self):
        assign_card(self.customer.id, self.catalog.id, actor=self.worker)
        self.customer.refresh_from_db()

        self.assertEqual(self.customer.card_id, self.catalog.id)
        self.assertEqual(self.customer.total_boxes, 10)
        self.assertEqual(self.customer.boxes_filled, 0)
        self.assertEqual(self.customer.price_per_box, Decimal("10.000000"))
        self.assertEqual(self.customer.total_amount, Decimal("100.00"))
        self.assertEqual(self.customer.status, Customer.Status.IN_PROGRESS)

    def test_second_active_card_is_rejected(self):
        assign_card(self.customer.id, self.catalog.id, actor=self.worker)

        with self.assertRaises(ConflictError):
            assign_card(self.customer.id, self.catalog.id, actor=self.worker)
        self.assertEqual(CustomerCard.objects.filter(customer=self.customer).count(), 1)

    def test_new_card_allowed_after_completion(self):
        first = assign_card(self.customer.id, self.catalog.id, actor=self.worker)
        apply_payment(first.id, boxes_to_check=10, actor=self.worker)

        second = assign_card(self.customer.id, self.catalog.id, actor=self.worker)

        self.assertNotEqual(first.id, second.id)
        self.assertEqual(get_active_card(self.customer.id).id, second.id)

    def test_unknown_customer_or_card_is_not_found(self):
        with self.assertRaises(NotFoundError):
            assign_card(999999, self.catalog.id, actor=self.worker)
        with self.assertRaises(NotFoundError):
            assign_card(self.customer.id, 999999, actor=self.worker)

    def test_catalog_price_change_does_not_move_assigned_card(self):
        customer_card = assign_card(self.customer.id, self.catalog.id, actor=self.worker)
        self.catalog.amount = Decimal("200.00")
        self.catalog.save()

        payment = apply_payment(customer_card.id, amount_paid="25", actor=self.worker)

        customer_card.refresh_from_db()
        self.assertEqual(payment.boxes_checked, 2)
        self.assertEqual(customer_card.total_amount, Decimal("100.00"))
        self.assertEqual(customer_card.box_price, Decimal("10.000000"))

    def test_assign_writes_audit_entry(self):
        customer_card = assign_card(self.customer.id, self.catalog.id, actor=self.worker)

        entry = AuditLog.objects.get(action="card.assign")
        self.assertEqual(entry.object_id, str(customer_card.id))
        self.assertEqual(entry.actor, self.worker)
        self.assertEqual(entry.actor_employee_id, self.worker.profile.employee_id)
        self.assertEqual(entry.after_data["card_code"], self.catalog.code)

    def test_get_active_card_without_card_is_not_found(self):
        with self.assertRaises(NotFoundError):
            get_active_card(self.customer.id)


class PaymentScenarioTests(LedgerTestMixin, TestCase):
    def setUp(self):
        self.create_fixtures()
        self.customer_card = assign_card(self.customer.id, self.catalog.id, actor=self.worker)

    def _scenario_a(self):
        return apply_payment(self.customer_card.id, amount_paid=Decimal("25"), actor=self.worker)

    def _scenario_b(self):
        return apply_payment(self.customer_card.id, boxes_to_check=8, actor=self.worker)

    def test_scenario_a_amount_keeps_remainder(self):
        payment = self._scenario_a()

        self.customer_card.refresh_from_db()
        self.assertEqual(payment.boxes_checked, 2)
        self.assertEqual(payment.amount_paid, Decimal("25.00"))
        self.assertEqual(self.customer_card.boxes_checked, 2)
        self.assertEqual(self.customer_card.amount_remaining, Decimal("75.00"))
        self.assertEqual(
            [slot.box_number for slot in get_box_states(self.customer_card.id) if slot.is_checked],
            [1, 2],
        )
        self.assert_ledger_invariants(self.customer_card)

    def test_scenario_b_boxes_complete_card(self):
        self._scenario_a()
        payment = self._scenario_b()

        self.customer_card.refresh_from_db()
        self.assertEqual(payment.amount_paid, Decimal("75.00"))
        self.assertEqual(self.customer_card.boxes_checked, 10)
        self.assertEqual(self.customer_card.amount_remaining, Decimal("0.00"))
        self.assertEqual(self.customer_card.status, CustomerCard.Status.COMPLETED)
        self.customer.refresh_from_db()
        self.assertEqual(self.customer.status, Customer.Status.COMPLETED)
        self.assert_ledger_invariants(self.customer_card)

    def test_scenario_c_reversal_reopens_card(self):
        self._scenario_a()
        payment_b = self._scenario_b()

        customer_card = reverse_payment(payment_b.id, actor=self.worker)

        self.assertEqual(customer_card.boxes_checked, 2)
        self.assertEqual(customer_card.status, CustomerCard.Status.ACTIVE)
        self.assertEqual(customer_card.amount_remaining, Decimal("75.00"))
        self.assertFalse(BoxPayment.objects.filter(pk=payment_b.id).exists())
        self.customer.refresh_from_db()
        self.assertEqual(self.customer.status, Customer.Status.IN_PROGRESS)
        self.assertEqual(self.customer.boxes_filled, 2)
        self.assert_ledger_invariants(self.customer_card)

    def test_scenario_d_adjust_increase_checks_next_lowest_box(self):
        payment_a = self._scenario_a()

        payment = adjust_payment(payment_a.id, new_amount="35", notes="Miscounted", actor=self.worker)

        self.customer_card.refresh_from_db()
        self.assertEqual(payment.boxes_checked, 3)
        self.assertEqual(payment.amount_paid, Decimal("35.00"))
        self.assertEqual(payment.adjusted_from, Decimal("25.00"))
        self.assertEqual(payment.adjusted_by, self.worker)
        self.assertEqual(payment.adjustment_notes, "Miscounted")
        self.assertIsNotNone(payment.adjusted_at)
        self.assertEqual(self.customer_card.boxes_checked, 3)
        self.assertEqual(self.customer_card.amount_paid, Decimal("35.00"))
        box_three = BoxState.objects.get(customer_card=self.customer_card, box_number=3)
        self.assertTrue(box_three.is_checked)
        self.assertEqual(box_three.payment_id, payment_a.id)
        self.assert_ledger_invariants(self.customer_card)

    def test_apply_then_reverse_restores_exact_slot_state(self):
        apply_payment(self.customer_card.id, amount_paid="30", actor=self.worker)
        self.customer_card.refresh_from_db()
        before_slots = slot_snapshot(self.customer_card)
        before = (self.customer_card.boxes_checked, self.customer_card.amount_paid, self.customer_card.status)

        payment = apply_payment(self.customer_card.id, boxes_to_check=4, actor=self.worker)
        reverse_payment(payment.id, actor=self.worker)

        self.customer_card.refresh_from_db()
        self.assertEqual(
            (self.customer_card.boxes_checked, self.customer_card.amount_paid, self.customer_card.status),
            before,
        )
        self.assertEqual(slot_snapshot(self.customer_card), before_slots)

    def test_amount_below_box_price_is_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            apply_payment(self.customer_card.id, amount_paid="9.99", actor=self.worker)

        self.assertIn("Invalid number of boxes", ctx.exception.message)
        self.assertFalse(BoxPayment.objects.exists())

    def test_too_many_boxes_reports_remaining(self):
        self._scenario_a()

        with self.assertRaises(ConflictError) as ctx:
            apply_payment(self.customer_card.id, boxes_to_check=9, actor=self.worker)

        self.assertEqual(ctx.exception.details["boxes_remaining"], 8)

    def test_amount_above_balance_is_rejected_and_rolled_back(self):
        apply_payment(self.customer_card.id, amount_paid="95", actor=self.worker)
        self.customer_card.refresh_from_db()
        before_slots = slot_snapshot(self.customer_card)

        with self.assertRaises(ConflictError) as ctx:
            apply_payment(self.customer_card.id, amount_paid="10", actor=self.worker)

        self.assertEqual(ctx.exception.details["amount_remaining"], Decimal("5.00"))
        self.assertEqual(BoxPayment.objects.count(), 1)
        self.assertEqual(slot_snapshot(self.customer_card), before_slots)
        self.assertEqual(BranchDailyTotal.objects.get(branch=self.branch, date=self.today).total_payments, 1)

    def test_last_boxes_settle_exact_balance(self):
        apply_payment(self.customer_card.id, amount_paid="95", actor=self.worker)

        payment = apply_payment(self.customer_card.id, boxes_to_check=1, actor=self.worker)

        self.customer_card.refresh_from_db()
        self.assertEqual(payment.amount_paid, Decimal("5.00"))
        self.assertEqual(self.customer_card.amount_remaining, Decimal("0.00"))
        self.assertEqual(self.customer_card.status, CustomerCard.Status.COMPLETED)
        self.assert_ledger_invariants(self.customer_card)

    def test_input_validation(self):
        cases = [
            {},
            {"amount_paid": "10", "boxes_to_check": 1},
            {"amount_paid": "-10"},
            {"amount_paid": "abc"},
            {"amount_paid": True},
            {"boxes_to_check": 0},
            {"boxes_to_check": "2.5"},
            {"amount_paid": "10", "method": "crypto"},
            {"amount_paid": "1e30"},
            {"amount_paid": "Infinity"},
            {"amount_paid": "10000000000.00"},
        ]
        for kwargs in cases:
            with self.subTest(kwargs=kwargs):
                with self.assertRaises(ValidationError):
                    apply_payment(self.customer_card.id, actor=self.worker, **kwargs)
        self.assertFalse(BoxPayment.objects.exists())

    def test_adjust_rejects_out_of_range_amount(self):
        payment = self._scenario_a()

        for new_amount in ("1e30", "NaN", "10000000000.00"):
            with self.subTest(new_amount=new_amount):
                with self.assertRaises(ValidationError):
                    adjust_payment(payment.id, new_amount=new_amount, actor=self.worker)
        payment.refresh_from_db()
        self.assertEqual(payment.amount_paid, Decimal("25.00"))

    def test_unknown_card_is_not_found(self):
        with self.assertRaises(NotFoundError):
            apply_payment(999999, amount_paid="10", actor=self.worker)

    def test_payment_records_method_notes_and_branch(self):
        payment = apply_payment(
            self.customer_card.id,
            amount_paid="20",
            method=BoxPayment.Method.MOBILE_MONEY,
            notes="  MoMo ref 1182  ",
            actor=self.worker,
        )

        self.assertEqual(payment.payment_method, "mobile_money")
        self.assertEqual(payment.notes, "MoMo ref 1182")
        self.assertEqual(payment.branch, self.branch)
        self.assertEqual(payment.payment_date, self.today)

    def test_backdated_payment_stamps_slots_and_customer(self):
        yesterday = self.today - timedelta(days=1)

        apply_payment(self.customer_card.id, amount_paid="20", actor=self.worker, payment_date=yesterday)

        checked = BoxState.objects.filter(customer_card=self.customer_card, is_checked=True)
        self.assertEqual(set(checked.values_list("checked_date", flat=True)), {yesterday})
        self.customer.refresh_from_db()
        self.assertEqual(self.customer.last_payment_date, yesterday)
        self.assertTrue(WorkerDailyTotal.objects.filter(worker=self.worker, date=yesterday).exists())

    def test_reversing_twice_is_not_found(self):
        payment = self._scenario_a()
        reverse_payment(payment.id, actor=self.worker)

        with self.assertRaises(NotFoundError):
            reverse_payment(payment.id, actor=self.worker)
        with self.assertRaises(NotFoundError):
            adjust_payment(payment.id, new_amount="30", actor=self.worker)

    def test_adjust_to_same_amount_is_rejected(self):
        payment = self._scenario_a()

        with self.assertRaises(InvariantViolation):
            adjust_payment(payment.id, new_amount="25.00", actor=self.worker)

    def test_adjust_increase_beyond_remaining_boxes_is_rejected(self):
        payment = self._scenario_a()

        with self.assertRaises(ConflictError) as ctx:
            adjust_payment(payment.id, new_amount="115", actor=self.worker)

        self.assertEqual(ctx.exception.details["boxes_remaining"], 8)
        payment.refresh_from_db()
        self.assertEqual(payment.amount_paid, Decimal("25.00"))

    def test_adjust_decrease_clamps_to_owned_boxes(self):
        payment = apply_payment(self.customer_card.id, amount_paid="19", actor=self.worker)
        payment = adjust_payment(payment.id, new_amount="21", actor=self.worker)
        self.assertEqual(payment.boxes_checked, 1)

        with self.assertLogs("boxcards.payments", level="WARNING"):
            payment = adjust_payment(payment.id, new_amount="1", actor=self.worker)

        self.assertEqual(payment.boxes_checked, 0)
        self.customer_card.refresh_from_db()
        self.assertEqual(self.customer_card.boxes_checked, 0)
        self.assertEqual(self.customer_card.amount_paid, Decimal("1.00"))
        self.assert_ledger_invariants(self.customer_card)

    def test_adjust_asymmetry_increase_takes_global_lowest_decrease_releases_highest_owned(self):
        first = apply_payment(self.customer_card.id, amount_paid="20", actor=self.worker)
        second = apply_payment(self.customer_card.id, amount_paid="20", actor=self.worker)
        reverse_payment(first.id, actor=self.worker)

        adjust_payment(second.id, new_amount="30", actor=self.worker)
        owned = BoxState.objects.filter(payment=second).order_by("box_number").values_list("box_number", flat=True)
        self.assertEqual(list(owned), [1, 3, 4])

        adjust_payment(second.id, new_amount="10", actor=self.worker)
        owned = BoxState.objects.filter(payment=second).order_by("box_number").values_list("box_number", flat=True)
        self.assertEqual(list(owned), [1])
        self.assert_ledger_invariants(self.customer_card)

    def test_adjust_moves_card_between_completed_and_active(self):
        self._scenario_a()
        payment_b = self._scenario_b()
        self.customer_card.refresh_from_db()
        self.assertEqual(self.customer_card.status, CustomerCard.Status.COMPLETED)

        adjust_payment(payment_b.id, new_amount="55", actor=self.worker)

        self.customer_card.refresh_from_db()
        self.customer.refresh_from_db()
        self.assertEqual(self.customer_card.status, CustomerCard.Status.ACTIVE)
        self.assertEqual(self.customer_card.boxes_checked, 8)
        self.assertEqual(self.customer.status, Customer.Status.IN_PROGRESS)
        self.assertEqual(self.customer.boxes_filled, 8)
        self.assert_ledger_invariants(self.customer_card)

        adjust_payment(payment_b.id, new_amount="75", actor=self.worker)

        self.customer_card.refresh_from_db()
        self.customer.refresh_from_db()
        self.assertEqual(self.customer_card.status, CustomerCard.Status.COMPLETED)
        self.assertEqual(self.customer_card.amount_remaining, Decimal("0.00"))
        self.assertEqual(self.customer.status, Customer.Status.COMPLETED)
        self.assert_ledger_invariants(self.customer_card)

    def test_boxes_after_overpayment_record_zero_amount(self):
        apply_payment(self.customer_card.id, amount_paid="19", actor=self.worker)
        apply_payment(self.customer_card.id, amount_paid="81", actor=self.worker)
        self.customer_card.refresh_from_db()
        self.assertEqual(self.customer_card.boxes_remaining, 1)
        self.assertEqual(self.customer_card.amount_remaining, Decimal("0.00"))

        payment = apply_payment(self.customer_card.id, boxes_to_check=1, actor=self.worker)

        self.assertEqual(payment.amount_paid, Decimal("0.00"))
        self.customer_card.refresh_from_db()
        self.assertEqual(self.customer_card.status, CustomerCard.Status.COMPLETED)
        self.assert_ledger_invariants(self.customer_card)

    def test_failure_after_writes_rolls_back_everything(self):
        self.customer_card.refresh_from_db()
        before_slots = slot_snapshot(self.customer_card)
        before_card = (
            self.customer_card.boxes_checked,
            self.customer_card.amount_paid,
            self.customer_card.amount_remaining,
            self.customer_card.status,
        )

        with patch("boxcards.payments.sync_customer_from_card", side_effect=RuntimeError("sync failed")):
            with self.assertRaises(RuntimeError):
                apply_payment(self.customer_card.id, amount_paid="30", actor=self.worker)

        self.customer_card.refresh_from_db()
        self.assertEqual(
            (
                self.customer_card.boxes_checked,
                self.customer_card.amount_paid,
                self.customer_card.amount_remaining,
                self.customer_card.status,
            ),
            before_card,
        )
        self.assertFalse(BoxPayment.objects.exists())
        self.assertFalse(BoxState.objects.filter(customer_card=self.customer_card, is_checked=True).exists())
        self.assertEqual(slot_snapshot(self.customer_card), before_slots)
        self.assertFalse(WorkerDailyTotal.objects.exists())
        self.assertFalse(BranchDailyTotal.objects.exists())
        self.assertFalse(CompanyDailyTotal.objects.exists())
        self.assertFalse(AuditLog.objects.filter(action="payment.apply").exists())
        self.customer.refresh_from_db()
        self.assertEqual(self.customer.boxes_filled, 0)
        self.assertIsNone(self.customer.last_payment_date)

    def test_completed_card_rejects_more_payments(self):
        apply_payment(self.customer_card.id, boxes_to_check=10, actor=self.worker)

        with self.assertRaises(ConflictError) as ctx:
            apply_payment(self.customer_card.id, boxes_to_check=1, actor=self.worker)

        self.assertEqual(ctx.exception.details["boxes_remaining"], 0)

    def test_each_mutation_writes_audit_entry(self):
        payment = self._scenario_a()
        adjust_payment(payment.id, new_amount="30", actor=self.worker)
        reverse_payment(payment.id, actor=self.worker)

        actions = list(AuditLog.objects.order_by("timestamp", "id").values_list("action", flat=True))
        self.assertEqual(actions, ["card.assign", "payment.apply", "payment.adjust", "payment.reverse"])
        reverse_entry = AuditLog.objects.get(action="payment.reverse")
        self.assertEqual(reverse_entry.before_data["payment_amount"], "30.00")
        self.assertEqual(reverse_entry.after_data["boxes_checked"], 0)


class ReadQueryTests(LedgerTestMixin, TestCase):
    def setUp(self):
        self.create_fixtures()
        self.customer_card = assign_card(self.customer.id, self.catalog.id, actor=self.worker)
        self.first = apply_payment(self.customer_card.id, amount_paid="20", actor=self.worker)
        self.second = apply_payment(
            self.customer_card.id,
            amount_paid="30",
            actor=self.worker,
            payment_date=self.today - timedelta(days=1),
        )

    def test_reads_do_not_mutate(self):
        self.customer_card.refresh_from_db()
        before = (
            slot_snapshot(self.customer_card),
            self.customer_card.boxes_checked,
            self.customer_card.amount_paid,
            AuditLog.objects.count(),
            BoxPayment.objects.count(),
        )

        for _ in range(2):
            get_box_states(self.customer_card.id)
            get_payment_history(self.customer_card.id)
            get_daily_sales(self.customer_card.id)
            get_active_card(self.customer.id)

        self.customer_card.refresh_from_db()
        after = (
            slot_snapshot(self.customer_card),
            self.customer_card.boxes_checked,
            self.customer_card.amount_paid,
            AuditLog.objects.count(),
            BoxPayment.objects.count(),
        )
        self.assertEqual(before, after)

    def test_payment_history_is_newest_first(self):
        history = get_payment_history(self.customer_card.id)
        self.assertEqual([payment.id for payment in history], [self.first.id, self.second.id])

    def test_daily_sales_per_date(self):
        self.assertEqual(get_daily_sales(self.customer_card.id), Decimal("20.00"))
        self.assertEqual(
            get_daily_sales(self.customer_card.id, self.today - timedelta(days=1)),
            Decimal("30.00"),
        )
        self.assertEqual(
            get_daily_sales(self.customer_card.id, self.today - timedelta(days=5)),
            Decimal("0.00"),
        )

    def test_worker_daily_sales(self):
        summary = get_worker_daily_sales(self.worker)
        self.assertEqual(summary["date"], self.today)
        self.assertEqual(summary["total_sales"], Decimal("20.00"))
        self.assertEqual(summary["payments_count"], 1)

    def test_reads_on_unknown_card_are_not_found(self):
        for read in (get_box_states, get_payment_history, get_daily_sales):
            with self.subTest(read=read.__name__):
                with self.assertRaises(NotFoundError):
                    read(999999)


class RollupTests(LedgerTestMixin, TestCase):
    def setUp(self):
        self.create_fixtures()
        self.branch_b = Branch.objects.create(company=self.company, name="Tema", code="TEM")
        self.worker_b = make_worker("collector2", self.branch)
        self.card_1 = assign_card(self.customer.id, self.catalog.id, actor=self.worker)
        customer_2 = make_customer("Kofi Boateng", self.branch, self.worker_b, phone="0247654321")
        self.card_2 = assign_card(customer_2.id, self.catalog.id, actor=self.worker_b)
        customer_3 = make_customer("Esi Owusu", self.branch_b, self.worker, phone="0201112233")
        self.card_3 = assign_card(customer_3.id, self.catalog.id, actor=self.worker)

    def test_branch_counts_distinct_active_workers(self):
        apply_payment(self.card_1.id, amount_paid="20", actor=self.worker)
        apply_payment(self.card_1.id, amount_paid="10", actor=self.worker)
        apply_payment(self.card_2.id, amount_paid="30", actor=self.worker_b)

        branch_total = BranchDailyTotal.objects.get(branch=self.branch, date=self.today)
        self.assertEqual(branch_total.total_collections, Decimal("60.00"))
        self.assertEqual(branch_total.total_payments, 3)
        self.assertEqual(branch_total.total_workers_active, 2)

        worker_total = WorkerDailyTotal.objects.get(worker=self.worker, branch=self.branch, date=self.today)
        self.assertEqual(worker_total.total_collections, Decimal("30.00"))
        self.assertEqual(worker_total.total_customers_paid, 2)

    def test_company_counts_distinct_active_branches(self):
        apply_payment(self.card_1.id, amount_paid="20", actor=self.worker)
        apply_payment(self.card_3.id, amount_paid="10", actor=self.worker)

        company_total = CompanyDailyTotal.objects.get(company=self.company, date=self.today)
        self.assertEqual(company_total.total_collections, Decimal("30.00"))
        self.assertEqual(company_total.total_payments, 2)
        self.assertEqual(company_total.total_branches_active, 2)
        self.assertEqual(WorkerDailyTotal.objects.filter(worker=self.worker, date=self.today).count(), 2)

    def test_reversal_updates_accumulators_and_recounts(self):
        apply_payment(self.card_1.id, amount_paid="20", actor=self.worker)
        payment = apply_payment(self.card_2.id, amount_paid="30", actor=self.worker_b)

        reverse_payment(payment.id, actor=self.worker)

        branch_total = BranchDailyTotal.objects.get(branch=self.branch, date=self.today)
        self.assertEqual(branch_total.total_collections, Decimal("20.00"))
        self.assertEqual(branch_total.total_payments, 1)
        self.assertEqual(branch_total.total_workers_active, 1)
        worker_total = WorkerDailyTotal.objects.get(worker=self.worker_b, branch=self.branch, date=self.today)
        self.assertEqual(worker_total.total_collections, Decimal("0.00"))
        self.assertEqual(worker_total.total_customers_paid, 0)

    def test_reversal_uses_payment_date_bucket(self):
        last_week = self.today - timedelta(days=7)
        payment = apply_payment(self.card_1.id, amount_paid="20", actor=self.worker, payment_date=last_week)
        apply_payment(self.card_1.id, amount_paid="10", actor=self.worker)

        reverse_payment(payment.id, actor=self.worker)

        self.assertEqual(BranchDailyTotal.objects.get(branch=self.branch, date=last_week).total_collections, 0)
        self.assertEqual(
            BranchDailyTotal.objects.get(branch=self.branch, date=self.today).total_collections,
            Decimal("10.00"),
        )

    def test_adjust_moves_collections_only(self):
        payment = apply_payment(self.card_1.id, amount_paid="20", actor=self.worker)

        adjust_payment(payment.id, new_amount="45", actor=self.worker)

        branch_total = BranchDailyTotal.objects.get(branch=self.branch, date=self.today)
        self.assertEqual(branch_total.total_collections, Decimal("45.00"))
        self.assertEqual(branch_total.total_payments, 1)
        company_total = CompanyDailyTotal.objects.get(company=self.company, date=self.today)
        self.assertEqual(company_total.total_collections, Decimal("45.00"))
        self.assertEqual(company_total.total_payments, 1)

    def test_accumulators_floor_at_zero(self):
        reverse_collection(worker=self.worker, branch=self.branch, on_date=self.today, amount=Decimal("50.00"))

        worker_total = WorkerDailyTotal.objects.get(worker=self.worker, branch=self.branch, date=self.today)
        self.assertEqual(worker_total.total_collections, Decimal("0.00"))
        self.assertEqual(worker_total.total_customers_paid, 0)
        branch_total = BranchDailyTotal.objects.get(branch=self.branch, date=self.today)
        self.assertEqual(branch_total.total_payments, 0)
        self.assertEqual(branch_total.total_workers_active, 0)
        company_total = CompanyDailyTotal.objects.get(company=self.company, date=self.today)
        self.assertEqual(company_total.total_branches_active, 0)


class LegacyReconciliationTests(LedgerTestMixin, TestCase):
    def setUp(self):
        self.create_fixtures()
        self.legacy = make_customer(
            "Yaw Asante",
            self.branch,
            self.worker,
            phone="0209998877",
            card=self.catalog,
            total_boxes=10,
            boxes_filled=4,
            total_amount=Decimal("100.00"),
            amount_paid=Decimal("40.00"),
        )

    def test_get_active_card_rebuilds_legacy_progress(self):
        customer_card = get_active_card(self.legacy.id)

        self.assertEqual(customer_card.boxes_checked, 4)
        self.assertEqual(customer_card.amount_paid, Decimal("40.00"))
        self.assertEqual(customer_card.amount_remaining, Decimal("60.00"))
        self.assertEqual(customer_card.status, CustomerCard.Status.ACTIVE)
        checked = BoxState.objects.filter(customer_card=customer_card, is_checked=True).order_by("box_number")
        self.assertEqual(list(checked.values_list("box_number", flat=True)), [1, 2, 3, 4])
        self.assertFalse(checked.filter(payment__isnull=False).exists())
        self.assertEqual(
            set(checked.values_list("checked_date", flat=True)),
            {timezone.localdate(self.legacy.created_at)},
        )
        self.assertTrue(AuditLog.objects.filter(action="card.reconcile", object_id=str(customer_card.id)).exists())

    def test_reconciliation_runs_once(self):
        first = get_active_card(self.legacy.id)
        second = get_active_card(self.legacy.id)

        self.assertEqual(first.id, second.id)
        self.assertEqual(CustomerCard.objects.filter(customer=self.legacy).count(), 1)
        self.assertEqual(AuditLog.objects.filter(action="card.reconcile").count(), 1)

    def test_payment_after_reconciliation_continues_from_next_box(self):
        customer_card = get_active_card(self.legacy.id)

        apply_payment(customer_card.id, boxes_to_check=2, actor=self.worker)

        owned = BoxState.objects.filter(customer_card=customer_card, payment__isnull=False)
        self.assertEqual(sorted(owned.values_list("box_number", flat=True)), [5, 6])

    def test_completed_legacy_customer_has_no_active_card(self):
        self.legacy.boxes_filled = 10
        self.legacy.amount_paid = Decimal("100.00")
        self.legacy.save()

        with self.assertRaises(NotFoundError):
            get_active_card(self.legacy.id)

        customer_card = CustomerCard.objects.get(customer=self.legacy)
        self.assertEqual(customer_card.status, CustomerCard.Status.COMPLETED)

    def test_missing_totals_fall_back_to_catalog(self):
        self.legacy.total_boxes = 0
        self.legacy.total_amount = Decimal("0")
        self.legacy.save()

        customer_card = get_active_card(self.legacy.id)

        self.assertEqual(customer_card.total_boxes, 10)
        self.assertEqual(customer_card.total_amount, Decimal("100.00"))

    def test_command_dry_run_changes_nothing(self):
        out = StringIO()
        call_command("reconcile_customer_cards", stdout=out)

        self.assertIn("DRY-RUN", out.getvalue())
        self.assertFalse(CustomerCard.objects.exists())

    def test_command_apply_reconciles_candidates(self):
        out = StringIO()
        call_command("reconcile_customer_cards", "--apply", stdout=out)

        self.assertIn("Reconciled: 1", out.getvalue())
        self.assertTrue(CustomerCard.objects.filter(customer=self.legacy).exists())

        out = StringIO()
        call_command("reconcile_customer_cards", "--apply", stdout=out)
        self.assertIn("Reconciled: 0", out.getvalue())
        self.assertEqual(CustomerCard.objects.filter(customer=self.legacy).count(), 1)


class CustomerQueryTests(LedgerTestMixin, TestCase):
    def setUp(self):
        self.create_fixtures()

    @override_settings(BOXCARDS_DEFAULTING_DAYS=3)
    def test_defaulting_customers(self):
        stale = make_customer("Stale", self.branch, self.worker, last_payment_date=self.today - timedelta(days=5))
        make_customer("Fresh", self.branch, self.worker, last_payment_date=self.today - timedelta(days=1))
        make_customer(
            "Done",
            self.branch,
            self.worker,
            status=Customer.Status.COMPLETED,
            last_payment_date=self.today - timedelta(days=30),
        )

        defaulting = set(Customer.objects.defaulting(today=self.today).values_list("name", flat=True))

        self.assertIn(stale.name, defaulting)
        self.assertIn(self.customer.name, defaulting)
        self.assertNotIn("Fresh", defaulting)
        self.assertNotIn("Done", defaulting)

    def test_balance(self):
        customer_card = assign_card(self.customer.id, self.catalog.id, actor=self.worker)
        apply_payment(customer_card.id, amount_paid="25", actor=self.worker)

        self.customer.refresh_from_db()
        self.assertEqual(self.customer.balance, Decimal("75.00"))
        self.assertEqual(self.customer.last_payment_date, self.today)


class ProfileSignalTests(TestCase):
    def test_new_user_gets_worker_profile(self):
        user = User.objects.create_user(username="newbie", password="pass12345")

        self.assertEqual(user.profile.role, UserProfile.Roles.WORKER)
        self.assertEqual(user.profile.employee_id, f"AUTO-{user.id:05d}")

    def test_superuser_gets_admin_profile(self):
        user = User.objects.create_superuser(username="boss", password="pass12345", email="boss@example.com")

        self.assertEqual(user.profile.role, UserProfile.Roles.ADMIN)


class SiteRoutingTests(TestCase):
    def test_root_redirects_to_admin(self):
        response = self.client.get("/")

        self.assertEqual(response.status_code, 302)
        self.assertEqual(response.url, reverse("admin:index"))

    def test_admin_login_is_the_only_login_page(self):
        self.assertEqual(self.client.get(reverse("admin:login")).status_code, 200)
        self.assertEqual(self.client.get("/accounts/login/").status_code, 404)


class PaymentAdminTests(LedgerTestMixin, TestCase):
    def setUp(self):
        self.create_fixtures()
        self.admin_user = User.objects.create_superuser(
            username="admin", password="pass12345", email="admin@example.com"
        )
        self.customer_card = assign_card(self.customer.id, self.catalog.id, actor=self.worker)
        self.payment = apply_payment(self.customer_card.id, amount_paid="30", actor=self.worker)

    def test_reverse_action_reverses_payment(self):
        self.client.force_login(self.admin_user)

        response = self.client.post(
            reverse("admin:boxcards_boxpayment_changelist"),
            {"action": "reverse_selected_payments", "_selected_action": [self.payment.id]},
        )

        self.assertEqual(response.status_code, 302)
        self.assertFalse(BoxPayment.objects.filter(pk=self.payment.id).exists())
        self.customer_card.refresh_from_db()
        self.assertEqual(self.customer_card.boxes_checked, 0)
        entry = AuditLog.objects.get(action="payment.reverse")
        self.assertEqual(entry.actor, self.admin_user)

    def test_ledger_rows_are_view_only(self):
        self.client.force_login(self.admin_user)

        response = self.client.get(reverse("admin:boxcards_customercard_change", args=[self.customer_card.id]))

        self.assertEqual(response.status_code, 200)
        self.assertNotContains(response, 'name="_save"')


class ConcurrentPaymentTests(LedgerTestMixin, TransactionTestCase):
    def setUp(self):
        self.create_fixtures()
        self.customer_card = assign_card(self.customer.id, self.catalog.id, actor=self.worker)
        apply_payment(self.customer_card.id, boxes_to_check=9, actor=self.worker)

    def test_sequential_claims_on_last_box(self):
        apply_payment(self.customer_card.id, boxes_to_check=1, actor=self.worker)

        with self.assertRaises(ConflictError):
            apply_payment(self.customer_card.id, boxes_to_check=1, actor=self.worker)
        self.assert_ledger_invariants(self.customer_card)

    @skipUnlessDBFeature("has_select_for_update")
    def test_simultaneous_claims_on_last_box(self):
        barrier = threading.Barrier(2)
        successes = []
        conflicts = []

        def claim():
            try:
                barrier.wait()
                successes.append(apply_payment(self.customer_card.id, boxes_to_check=1, actor=self.worker))
            except ConflictError as exc:
                conflicts.append(exc)
            finally:
                connection.close()

        threads = [threading.Thread(target=claim) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(len(successes), 1)
        self.assertEqual(len(conflicts), 1)
        self.assertEqual(conflicts[0].details["boxes_remaining"], 0)
        self.assertEqual(BoxState.objects.filter(customer_card=self.customer_card, payment=successes[0]).count(), 1)
        self.assert_ledger_invariants(self.customer_card)
