from django.core.management.base import BaseCommand

from boxcards.exceptions import LedgerError
from boxcards.reconciliation import legacy_candidates, reconcile_legacy_card


class Command(BaseCommand):
    help = (
        "Build box-by-box card ledgers for customers that only carry legacy "
        "progress fields (card, boxes_filled, amount_paid)."
    )

    def add_arguments(self, parser):
        parser.add_argument(
            "--apply",
            action="store_true",
            help="Apply changes. Without this flag command runs in dry-run mode.",
        )

    def handle(self, *args, **options):
        apply_changes = bool(options.get("apply"))
        dry_run = not apply_changes

        self.stdout.write("Legacy card reconciliation started.")
        self.stdout.write(f"Mode: {'DRY-RUN' if dry_run else 'APPLY'}")

        candidates = list(legacy_candidates().select_related("card"))
        for customer in candidates:
            self.stdout.write(
                f"[PLAN] Customer #{customer.id} '{customer.name}': card {customer.card.code}, "
                f"{customer.boxes_filled}/{customer.total_boxes or customer.card.number_of_boxes} boxes, "
                f"paid {customer.amount_paid}."
            )

        if dry_run:
            self.stdout.write(self.style.SUCCESS(f"Dry-run complete. {len(candidates)} customer(s) to reconcile."))
            return

        reconciled = 0
        failed = 0
        for customer in candidates:
            try:
                customer_card = reconcile_legacy_card(customer.id)
            except LedgerError as exc:
                failed += 1
                self.stderr.write(f"[SKIP] Customer #{customer.id}: {exc}")
                continue
            if customer_card is not None:
                reconciled += 1

        summary = f"Reconciliation complete. Reconciled: {reconciled}, failed: {failed}."
        if failed:
            self.stdout.write(self.style.WARNING(summary))
        else:
            self.stdout.write(self.style.SUCCESS(summary))
