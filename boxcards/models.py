import uuid
from datetime import timedelta
from decimal import Decimal, ROUND_HALF_UP

from django.conf import settings
from django.contrib.auth.models import User
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator, RegexValidator
from django.db import models
from django.db.models import F, Q
from django.utils import timezone

MONEY = Decimal("0.01")
BOX_PRICE_PLACES = Decimal("0.000001")


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(MONEY, rounding=ROUND_HALF_UP)


def compute_box_price(total_amount: Decimal, total_boxes: int) -> Decimal:
    if not total_boxes:
        return Decimal("0")
    return (Decimal(total_amount) / Decimal(total_boxes)).quantize(BOX_PRICE_PLACES, rounding=ROUND_HALF_UP)


class Company(models.Model):
    name = models.CharField(max_length=120)
    code = models.CharField(max_length=20, unique=True)

    class Meta:
        ordering = ["name"]
        verbose_name_plural = "companies"

    def save(self, *args, **kwargs):
        self.name = " ".join((self.name or "").split())
        self.code = (self.code or "").strip().upper()
        super().save(*args, **kwargs)

    def __str__(self):
        return self.name


class Branch(models.Model):
    company = models.ForeignKey(Company, on_delete=models.PROTECT, related_name="branches")
    name = models.CharField(max_length=50)
    code = models.CharField(max_length=10, unique=True)

    class Meta:
        ordering = ["company__name", "name"]
        verbose_name_plural = "branches"

    @staticmethod
    def normalize_name(value: str) -> str:
        return " ".join((value or "").split())

    def clean(self):
        self.name = self.normalize_name(self.name)
        self.code = (self.code or "").strip().upper()
        if not self.name:
            raise ValidationError({"name": "Branch name cannot be blank."})
        normalized_self = self.name.casefold()
        conflict = (
            Branch.objects.exclude(pk=self.pk)
            .filter(company_id=self.company_id)
            .values_list("name", flat=True)
        )
        for existing_name in conflict:
            if self.normalize_name(existing_name).casefold() == normalized_self:
                raise ValidationError({"name": "Branch name must be unique within the company."})

    def save(self, *args, **kwargs):
        self.full_clean()
        super().save(*args, **kwargs)

    def __str__(self):
        return self.name


class UserProfile(models.Model):
    class Roles(models.TextChoices):
        ADMIN = "admin", "Admin"
        MANAGER = "manager", "Manager"
        WORKER = "worker", "Worker"

    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name="profile")
    employee_id = models.CharField(max_length=50, unique=True)
    role = models.CharField(max_length=20, choices=Roles.choices, default=Roles.WORKER)
    branch = models.ForeignKey(
        Branch,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="staff",
        help_text="Branch the worker collects for.",
    )

    class Meta:
        constraints = [
            models.CheckConstraint(
                condition=~Q(employee_id=""),
                name="userprofile_employee_id_not_blank",
            ),
        ]

    @classmethod
    def generate_auto_employee_id(cls, user_id=None, exclude_pk=None):
        base = f"AUTO-{int(user_id):05d}" if user_id else f"AUTO-{uuid.uuid4().hex[:10].upper()}"
        candidate = base
        suffix = 1

        queryset = cls.objects.all()
        if exclude_pk:
            queryset = queryset.exclude(pk=exclude_pk)

        while queryset.filter(employee_id=candidate).exists():
            token = f"-{suffix}"
            candidate = f"{base[:50 - len(token)]}{token}"
            suffix += 1
        return candidate

    def save(self, *args, **kwargs):
        self.employee_id = (self.employee_id or "").strip()
        if not self.employee_id:
            self.employee_id = self.generate_auto_employee_id(
                user_id=self.user_id,
                exclude_pk=self.pk,
            )
        super().save(*args, **kwargs)

    def __str__(self):
        branch_name = self.branch.name if self.branch else "No branch"
        return f"{self.user.username} [{self.employee_id}] ({self.role}) - {branch_name}"


# Catalog
class Card(models.Model):
    class Status(models.TextChoices):
        ACTIVE = "active", "Active"
        INACTIVE = "inactive", "Inactive"

    CODE_PREFIX = "BXC"

    name = models.CharField(max_length=100)
    code = models.CharField(max_length=20, unique=True, blank=True)
    number_of_boxes = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0.01"))],
    )
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.ACTIVE)

    class Meta:
        ordering = ["code"]

    @classmethod
    def generate_code(cls) -> str:
        last = cls.objects.order_by("-id").values_list("id", flat=True).first()
        number = (last or 0) + 1
        candidate = f"{cls.CODE_PREFIX}-{number:03d}"
        while cls.objects.filter(code=candidate).exists():
            number += 1
            candidate = f"{cls.CODE_PREFIX}-{number:03d}"
        return candidate

    @property
    def box_price(self) -> Decimal:
        return compute_box_price(self.amount, self.number_of_boxes)

    def save(self, *args, **kwargs):
        self.code = (self.code or "").strip().upper()
        if not self.code:
            self.code = self.generate_code()
        super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.name} ({self.code})"


class CustomerQuerySet(models.QuerySet):
    def defaulting(self, today=None):
        """Customers not completed whose last payment is older than the grace window (or who never paid)."""
        today = today or timezone.localdate()
        cutoff = today - timedelta(days=getattr(settings, "BOXCARDS_DEFAULTING_DAYS", 7))
        return self.exclude(status=Customer.Status.COMPLETED).filter(
            Q(last_payment_date__lt=cutoff) | Q(last_payment_date__isnull=True)
        )


class Customer(models.Model):
    class Status(models.TextChoices):
        IN_PROGRESS = "in_progress", "In progress"
        COMPLETED = "completed", "Completed"
        DEFAULTING = "defaulting", "Defaulting"

    name = models.CharField(max_length=100)
    phone = models.CharField(
        max_length=20,
        validators=[RegexValidator(regex=r"^\+?\d{7,20}$", message="Enter a valid phone number.")],
    )
    location = models.CharField(max_length=255, blank=True)
    branch = models.ForeignKey(Branch, on_delete=models.PROTECT, related_name="customers")
    worker = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="customers",
    )

    # Progress summary, kept in step with the active CustomerCard.
    card = models.ForeignKey(Card, on_delete=models.PROTECT, null=True, blank=True, related_name="customers")
    total_boxes = models.PositiveIntegerField(default=0)
    boxes_filled = models.PositiveIntegerField(default=0)
    price_per_box = models.DecimalField(max_digits=14, decimal_places=6, default=0)
    total_amount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    amount_paid = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.IN_PROGRESS)
    last_payment_date = models.DateField(null=True, blank=True)

    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    objects = CustomerQuerySet.as_manager()

    class Meta:
        ordering = ["name", "id"]
        indexes = [
            models.Index(fields=["branch", "status"], name="boxcards_cu_branch__1f0c2b_idx"),
            models.Index(fields=["worker", "status"], name="boxcards_cu_worker__8d3e41_idx"),
            models.Index(fields=["last_payment_date"], name="boxcards_cu_last_pa_5a7b90_idx"),
        ]

    @property
    def balance(self) -> Decimal:
        return (self.total_amount or Decimal("0")) - (self.amount_paid or Decimal("0"))

    def __str__(self):
        return f"{self.name} ({self.phone})"


class CustomerCard(models.Model):
    class Status(models.TextChoices):
        ACTIVE = "active", "Active"
        COMPLETED = "completed", "Completed"

    customer = models.ForeignKey(Customer, on_delete=models.CASCADE, related_name="customer_cards")
    card = models.ForeignKey(Card, on_delete=models.PROTECT, related_name="customer_cards")
    assigned_date = models.DateField(default=timezone.localdate)
    assigned_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="assigned_customer_cards",
    )

    # Snapshot of the catalog at assignment; never recalculated.
    total_boxes = models.PositiveIntegerField()
    total_amount = models.DecimalField(max_digits=12, decimal_places=2)
    box_price = models.DecimalField(max_digits=14, decimal_places=6)

    boxes_checked = models.PositiveIntegerField(default=0)
    amount_paid = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    amount_remaining = models.DecimalField(max_digits=12, decimal_places=2)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.ACTIVE)

    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["customer", "status"], name="boxcards_cu_custome_6b21d4_idx"),
            models.Index(fields=["assigned_date"], name="boxcards_cu_assigne_0e9f37_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["customer"],
                condition=Q(status="active"),
                name="customercard_one_active_per_customer",
            ),
            models.CheckConstraint(
                condition=Q(boxes_checked__lte=F("total_boxes")),
                name="customercard_boxes_checked_lte_total",
            ),
            models.CheckConstraint(
                condition=Q(amount_remaining__gte=0),
                name="customercard_amount_remaining_gte_0",
            ),
            models.CheckConstraint(
                condition=Q(amount_paid__gte=0),
                name="customercard_amount_paid_gte_0",
            ),
        ]

    @property
    def boxes_remaining(self) -> int:
        return self.total_boxes - self.boxes_checked

    @property
    def completion_percentage(self) -> Decimal:
        if not self.total_boxes:
            return Decimal("0.00")
        return quantize_money(Decimal(self.boxes_checked) * 100 / Decimal(self.total_boxes))

    def __str__(self):
        return f"{self.customer} / {self.card.code} ({self.boxes_checked}/{self.total_boxes})"


class BoxPayment(models.Model):
    class Method(models.TextChoices):
        CASH = "cash", "Cash"
        MOBILE_MONEY = "mobile_money", "Mobile money"
        BANK_TRANSFER = "bank_transfer", "Bank transfer"
        CHEQUE = "cheque", "Cheque"

    customer_card = models.ForeignKey(CustomerCard, on_delete=models.CASCADE, related_name="payments")
    worker = models.ForeignKey(User, on_delete=models.PROTECT, related_name="box_payments")
    # Rollup bucket the payment was counted in; reversal and adjustment hit the same rows.
    branch = models.ForeignKey(Branch, on_delete=models.PROTECT, related_name="box_payments")
    payment_date = models.DateField(default=timezone.localdate)
    boxes_checked = models.PositiveIntegerField()
    amount_paid = models.DecimalField(max_digits=12, decimal_places=2)
    payment_method = models.CharField(max_length=20, choices=Method.choices, default=Method.CASH)
    notes = models.TextField(blank=True, default="")

    adjusted_from = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    adjusted_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="adjusted_box_payments",
    )
    adjusted_at = models.DateTimeField(null=True, blank=True)
    adjustment_notes = models.TextField(blank=True, default="")

    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["-payment_date", "-created_at", "-id"]
        indexes = [
            models.Index(fields=["customer_card", "payment_date"], name="boxcards_bo_custome_c4a812_idx"),
            models.Index(fields=["worker", "payment_date"], name="boxcards_bo_worker__77e0b3_idx"),
            models.Index(fields=["payment_date"], name="boxcards_bo_payment_2d95fa_idx"),
        ]
        constraints = [
            models.CheckConstraint(condition=Q(amount_paid__gte=0), name="boxpayment_amount_gte_0"),
        ]

    def __str__(self):
        return f"Payment #{self.pk} {self.amount_paid} ({self.boxes_checked} boxes) on {self.payment_date}"


class BoxState(models.Model):
    customer_card = models.ForeignKey(CustomerCard, on_delete=models.CASCADE, related_name="box_states")
    box_number = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    is_checked = models.BooleanField(default=False)
    checked_date = models.DateField(null=True, blank=True)
    payment = models.ForeignKey(
        BoxPayment,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="box_states",
    )

    class Meta:
        ordering = ["customer_card", "box_number"]
        constraints = [
            models.UniqueConstraint(
                fields=["customer_card", "box_number"],
                name="boxstate_card_box_number_unique",
            ),
        ]
        indexes = [
            models.Index(fields=["customer_card", "is_checked"], name="boxcards_bo_custome_91f6e0_idx"),
        ]

    def __str__(self):
        mark = "x" if self.is_checked else " "
        return f"[{mark}] box {self.box_number} of card #{self.customer_card_id}"


# Rollups
class WorkerDailyTotal(models.Model):
    worker = models.ForeignKey(User, on_delete=models.CASCADE, related_name="daily_totals")
    branch = models.ForeignKey(Branch, on_delete=models.CASCADE, related_name="worker_daily_totals")
    date = models.DateField()
    total_collections = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    total_customers_paid = models.PositiveIntegerField(default=0)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-date", "worker_id"]
        constraints = [
            models.UniqueConstraint(fields=["worker", "branch", "date"], name="workerdailytotal_unique_bucket"),
        ]
        indexes = [
            models.Index(fields=["branch", "date"], name="boxcards_wo_branch__3b8c5e_idx"),
        ]

    def __str__(self):
        return f"{self.worker} @ {self.branch.code} {self.date}: {self.total_collections}"


class BranchDailyTotal(models.Model):
    branch = models.ForeignKey(Branch, on_delete=models.CASCADE, related_name="daily_totals")
    date = models.DateField()
    total_collections = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    total_payments = models.PositiveIntegerField(default=0)
    total_workers_active = models.PositiveIntegerField(default=0)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-date", "branch_id"]
        constraints = [
            models.UniqueConstraint(fields=["branch", "date"], name="branchdailytotal_unique_bucket"),
        ]

    def __str__(self):
        return f"{self.branch.code} {self.date}: {self.total_collections}"


class CompanyDailyTotal(models.Model):
    company = models.ForeignKey(Company, on_delete=models.CASCADE, related_name="daily_totals")
    date = models.DateField()
    total_collections = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    total_payments = models.PositiveIntegerField(default=0)
    total_branches_active = models.PositiveIntegerField(default=0)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-date", "company_id"]
        constraints = [
            models.UniqueConstraint(fields=["company", "date"], name="companydailytotal_unique_bucket"),
        ]

    def __str__(self):
        return f"{self.company.code} {self.date}: {self.total_collections}"


class AuditLog(models.Model):
    actor = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="audit_logs",
    )
    actor_username = models.CharField(max_length=150, default="SYSTEM")
    actor_employee_id = models.CharField(max_length=50, blank=True, default="", db_index=True)

    timestamp = models.DateTimeField(default=timezone.now, db_index=True)
    action = models.CharField(max_length=64, db_index=True)
    reason = models.CharField(max_length=255, default="system")
    object_type = models.CharField(max_length=64)
    object_id = models.CharField(max_length=64, blank=True, default="")

    branch = models.ForeignKey(
        Branch,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="audit_logs",
    )

    before_data = models.JSONField(default=dict, blank=True)
    after_data = models.JSONField(default=dict, blank=True)

    class Meta:
        ordering = ["-timestamp"]
        indexes = [
            models.Index(fields=["action", "timestamp"], name="boxcards_au_action_4e1a9c_idx"),
            models.Index(fields=["actor_employee_id", "timestamp"], name="boxcards_au_actor_e_b06d72_idx"),
            models.Index(fields=["branch", "timestamp"], name="boxcards_au_branch__e53f18_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=~Q(reason=""),
                name="auditlog_reason_not_blank",
            ),
        ]

    def __str__(self):
        return f"[{self.timestamp:%Y-%m-%d %H:%M}] {self.action} {self.object_type}:{self.object_id}"
