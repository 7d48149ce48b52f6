import decimal

import django.core.validators
import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Company",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=120)),
                ("code", models.CharField(max_length=20, unique=True)),
            ],
            options={
                "verbose_name_plural": "companies",
                "ordering": ["name"],
            },
        ),
        migrations.CreateModel(
            name="Card",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=100)),
                ("code", models.CharField(blank=True, max_length=20, unique=True)),
                (
                    "number_of_boxes",
                    models.PositiveIntegerField(validators=[django.core.validators.MinValueValidator(1)]),
                ),
                (
                    "amount",
                    models.DecimalField(
                        decimal_places=2,
                        max_digits=12,
                        validators=[django.core.validators.MinValueValidator(decimal.Decimal("0.01"))],
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[("active", "Active"), ("inactive", "Inactive")],
                        default="active",
                        max_length=20,
                    ),
                ),
            ],
            options={
                "ordering": ["code"],
            },
        ),
        migrations.CreateModel(
            name="Branch",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=50)),
                ("code", models.CharField(max_length=10, unique=True)),
                (
                    "company",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="branches",
                        to="boxcards.company",
                    ),
                ),
            ],
            options={
                "verbose_name_plural": "branches",
                "ordering": ["company__name", "name"],
            },
        ),
        migrations.CreateModel(
            name="UserProfile",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("employee_id", models.CharField(max_length=50, unique=True)),
                (
                    "role",
                    models.CharField(
                        choices=[("admin", "Admin"), ("manager", "Manager"), ("worker", "Worker")],
                        default="worker",
                        max_length=20,
                    ),
                ),
                (
                    "branch",
                    models.ForeignKey(
                        blank=True,
                        help_text="Branch the worker collects for.",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="staff",
                        to="boxcards.branch",
                    ),
                ),
                (
                    "user",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="profile",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("employee_id", ""), _negated=True),
                        name="userprofile_employee_id_not_blank",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="Customer",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=100)),
                (
                    "phone",
                    models.CharField(
                        max_length=20,
                        validators=[
                            django.core.validators.RegexValidator(
                                message="Enter a valid phone number.",
                                regex="^\\+?\\d{7,20}$",
                            )
                        ],
                    ),
                ),
                ("location", models.CharField(blank=True, max_length=255)),
                ("total_boxes", models.PositiveIntegerField(default=0)),
                ("boxes_filled", models.PositiveIntegerField(default=0)),
                ("price_per_box", models.DecimalField(decimal_places=6, default=0, max_digits=14)),
                ("total_amount", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("amount_paid", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("in_progress", "In progress"),
                            ("completed", "Completed"),
                            ("defaulting", "Defaulting"),
                        ],
                        default="in_progress",
                        max_length=20,
                    ),
                ),
                ("last_payment_date", models.DateField(blank=True, null=True)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "branch",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="customers",
                        to="boxcards.branch",
                    ),
                ),
                (
                    "card",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="customers",
                        to="boxcards.card",
                    ),
                ),
                (
                    "worker",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="customers",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["name", "id"],
                "indexes": [
                    models.Index(fields=["branch", "status"], name="boxcards_cu_branch__1f0c2b_idx"),
                    models.Index(fields=["worker", "status"], name="boxcards_cu_worker__8d3e41_idx"),
                    models.Index(fields=["last_payment_date"], name="boxcards_cu_last_pa_5a7b90_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="CustomerCard",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("assigned_date", models.DateField(default=django.utils.timezone.localdate)),
                ("total_boxes", models.PositiveIntegerField()),
                ("total_amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("box_price", models.DecimalField(decimal_places=6, max_digits=14)),
                ("boxes_checked", models.PositiveIntegerField(default=0)),
                ("amount_paid", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("amount_remaining", models.DecimalField(decimal_places=2, max_digits=12)),
                (
                    "status",
                    models.CharField(
                        choices=[("active", "Active"), ("completed", "Completed")],
                        default="active",
                        max_length=20,
                    ),
                ),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "assigned_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="assigned_customer_cards",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "card",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="customer_cards",
                        to="boxcards.card",
                    ),
                ),
                (
                    "customer",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="customer_cards",
                        to="boxcards.customer",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at", "-id"],
                "indexes": [
                    models.Index(fields=["customer", "status"], name="boxcards_cu_custome_6b21d4_idx"),
                    models.Index(fields=["assigned_date"], name="boxcards_cu_assigne_0e9f37_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("status", "active")),
                        fields=("customer",),
                        name="customercard_one_active_per_customer",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("boxes_checked__lte", models.F("total_boxes"))),
                        name="customercard_boxes_checked_lte_total",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("amount_remaining__gte", 0)),
                        name="customercard_amount_remaining_gte_0",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("amount_paid__gte", 0)),
                        name="customercard_amount_paid_gte_0",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="BoxPayment",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("payment_date", models.DateField(default=django.utils.timezone.localdate)),
                ("boxes_checked", models.PositiveIntegerField()),
                ("amount_paid", models.DecimalField(decimal_places=2, max_digits=12)),
                (
                    "payment_method",
                    models.CharField(
                        choices=[
                            ("cash", "Cash"),
                            ("mobile_money", "Mobile money"),
                            ("bank_transfer", "Bank transfer"),
                            ("cheque", "Cheque"),
                        ],
                        default="cash",
                        max_length=20,
                    ),
                ),
                ("notes", models.TextField(blank=True, default="")),
                ("adjusted_from", models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ("adjusted_at", models.DateTimeField(blank=True, null=True)),
                ("adjustment_notes", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "adjusted_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="adjusted_box_payments",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "branch",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="box_payments",
                        to="boxcards.branch",
                    ),
                ),
                (
                    "customer_card",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="payments",
                        to="boxcards.customercard",
                    ),
                ),
                (
                    "worker",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="box_payments",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-payment_date", "-created_at", "-id"],
                "indexes": [
                    models.Index(fields=["customer_card", "payment_date"], name="boxcards_bo_custome_c4a812_idx"),
                    models.Index(fields=["worker", "payment_date"], name="boxcards_bo_worker__77e0b3_idx"),
                    models.Index(fields=["payment_date"], name="boxcards_bo_payment_2d95fa_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount_paid__gte", 0)),
                        name="boxpayment_amount_gte_0",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="BoxState",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "box_number",
                    models.PositiveIntegerField(validators=[django.core.validators.MinValueValidator(1)]),
                ),
                ("is_checked", models.BooleanField(default=False)),
                ("checked_date", models.DateField(blank=True, null=True)),
                (
                    "customer_card",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="box_states",
                        to="boxcards.customercard",
                    ),
                ),
                (
                    "payment",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="box_states",
                        to="boxcards.boxpayment",
                    ),
                ),
            ],
            options={
                "ordering": ["customer_card", "box_number"],
                "indexes": [
                    models.Index(fields=["customer_card", "is_checked"], name="boxcards_bo_custome_91f6e0_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("customer_card", "box_number"),
                        name="boxstate_card_box_number_unique",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="WorkerDailyTotal",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("date", models.DateField()),
                ("total_collections", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("total_customers_paid", models.PositiveIntegerField(default=0)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "branch",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="worker_daily_totals",
                        to="boxcards.branch",
                    ),
                ),
                (
                    "worker",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="daily_totals",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-date", "worker_id"],
                "indexes": [
                    models.Index(fields=["branch", "date"], name="boxcards_wo_branch__3b8c5e_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("worker", "branch", "date"),
                        name="workerdailytotal_unique_bucket",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="BranchDailyTotal",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("date", models.DateField()),
                ("total_collections", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("total_payments", models.PositiveIntegerField(default=0)),
                ("total_workers_active", models.PositiveIntegerField(default=0)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "branch",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="daily_totals",
                        to="boxcards.branch",
                    ),
                ),
            ],
            options={
                "ordering": ["-date", "branch_id"],
                "constraints": [
                    models.UniqueConstraint(fields=("branch", "date"), name="branchdailytotal_unique_bucket")
                ],
            },
        ),
        migrations.CreateModel(
            name="CompanyDailyTotal",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("date", models.DateField()),
                ("total_collections", models.DecimalField(decimal_places=2, default=0, max_digits=14)),
                ("total_payments", models.PositiveIntegerField(default=0)),
                ("total_branches_active", models.PositiveIntegerField(default=0)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "company",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="daily_totals",
                        to="boxcards.company",
                    ),
                ),
            ],
            options={
                "ordering": ["-date", "company_id"],
                "constraints": [
                    models.UniqueConstraint(fields=("company", "date"), name="companydailytotal_unique_bucket")
                ],
            },
        ),
        migrations.CreateModel(
            name="AuditLog",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("actor_username", models.CharField(default="SYSTEM", max_length=150)),
                ("actor_employee_id", models.CharField(blank=True, db_index=True, default="", max_length=50)),
                ("timestamp", models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ("action", models.CharField(db_index=True, max_length=64)),
                ("reason", models.CharField(default="system", max_length=255)),
                ("object_type", models.CharField(max_length=64)),
                ("object_id", models.CharField(blank=True, default="", max_length=64)),
                ("before_data", models.JSONField(blank=True, default=dict)),
                ("after_data", models.JSONField(blank=True, default=dict)),
                (
                    "actor",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="audit_logs",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "branch",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="audit_logs",
                        to="boxcards.branch",
                    ),
                ),
            ],
            options={
                "ordering": ["-timestamp"],
                "indexes": [
                    models.Index(fields=["action", "timestamp"], name="boxcards_au_action_4e1a9c_idx"),
                    models.Index(fields=["actor_employee_id", "timestamp"], name="boxcards_au_actor_e_b06d72_idx"),
                    models.Index(fields=["branch", "timestamp"], name="boxcards_au_branch__e53f18_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("reason", ""), _negated=True),
                        name="auditlog_reason_not_blank",
                    )
                ],
            },
        ),
    ]
