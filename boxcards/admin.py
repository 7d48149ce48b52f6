from django.contrib import admin, messages

from .audit import log_audit_event
from .exceptions import LedgerError
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
from .payments import reverse_payment


class ReadOnlyAdminMixin:
    """Ledger and rollup rows change only through the payment operations."""

    def has_add_permission(self, request, obj=None):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Company)
class CompanyAdmin(admin.ModelAdmin):
    list_display = ("name", "code")
    search_fields = ("name", "code")


@admin.register(Branch)
class BranchAdmin(admin.ModelAdmin):
    list_display = ("name", "code", "company")
    list_filter = ("company",)
    search_fields = ("name", "code")
    list_select_related = ("company",)

    def has_add_permission(self, request):
        return bool(request.user and request.user.is_superuser)

    def has_delete_permission(self, request, obj=None):
        return bool(request.user and request.user.is_superuser)


@admin.register(UserProfile)
class UserProfileAdmin(admin.ModelAdmin):
    list_display = ("user", "employee_id", "role", "branch")
    list_filter = ("role", "branch")
    search_fields = ("user__username", "employee_id")
    list_select_related = ("user", "branch")

    def save_model(self, request, obj, form, change):
        old_obj = None
        if change and obj.pk:
            old_obj = UserProfile.objects.filter(pk=obj.pk).first()

        super().save_model(request, obj, form, change)

        if old_obj and (old_obj.role != obj.role or old_obj.branch_id != obj.branch_id):
            log_audit_event(
                actor=request.user,
                action="role.change",
                reason="admin_role_update",
                object_type="UserProfile",
                object_id=obj.id,
                branch=obj.branch,
                before={"role": old_obj.role, "branch_id": old_obj.branch_id},
                after={"role": obj.role, "branch_id": obj.branch_id},
            )


@admin.register(Card)
class CardAdmin(admin.ModelAdmin):
    list_display = ("code", "name", "number_of_boxes", "amount", "box_price", "status")
    list_filter = ("status",)
    search_fields = ("code", "name")
    readonly_fields = ("box_price",)

    def save_model(self, request, obj, form, change):
        old_obj = None
        if change and obj.pk:
            old_obj = Card.objects.filter(pk=obj.pk).first()

        super().save_model(request, obj, form, change)

        # Assigned cards keep their frozen price; only new assignments see this change.
        if old_obj and (old_obj.amount != obj.amount or old_obj.number_of_boxes != obj.number_of_boxes):
            log_audit_event(
                actor=request.user,
                action="price.change",
                reason="admin_card_price_update",
                object_type="Card",
                object_id=obj.id,
                before={"amount": old_obj.amount, "number_of_boxes": old_obj.number_of_boxes},
                after={"amount": obj.amount, "number_of_boxes": obj.number_of_boxes},
            )


@admin.register(Customer)
class CustomerAdmin(admin.ModelAdmin):
    list_display = ("name", "phone", "branch", "worker", "card", "boxes_filled", "total_boxes", "amount_paid", "status")
    list_filter = ("status", "branch")
    search_fields = ("name", "phone")
    list_select_related = ("branch", "worker", "card")
    readonly_fields = (
        "total_boxes",
        "boxes_filled",
        "price_per_box",
        "total_amount",
        "amount_paid",
        "status",
        "last_payment_date",
    )


class BoxStateInline(admin.TabularInline):
    model = BoxState
    fields = ("box_number", "is_checked", "checked_date", "payment")
    readonly_fields = fields
    extra = 0
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(CustomerCard)
class CustomerCardAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = (
        "id",
        "customer",
        "card",
        "assigned_date",
        "boxes_checked",
        "total_boxes",
        "amount_paid",
        "amount_remaining",
        "completion_percentage",
        "status",
    )
    list_filter = ("status", "customer__branch", "assigned_date")
    search_fields = ("customer__name", "customer__phone", "card__code")
    list_select_related = ("customer", "card")
    inlines = (BoxStateInline,)


@admin.register(BoxPayment)
class BoxPaymentAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = (
        "id",
        "payment_date",
        "customer_card",
        "worker",
        "branch",
        "boxes_checked",
        "amount_paid",
        "payment_method",
        "adjusted_from",
        "adjusted_by",
    )
    list_filter = ("payment_method", "branch", "payment_date")
    search_fields = ("customer_card__customer__name", "worker__username", "notes")
    list_select_related = ("customer_card__customer", "worker", "branch", "adjusted_by")
    actions = ("reverse_selected_payments",)

    @admin.action(description="Reverse selected payments")
    def reverse_selected_payments(self, request, queryset):
        reversed_count = 0
        for payment_id in queryset.values_list("id", flat=True):
            try:
                reverse_payment(payment_id, actor=request.user)
            except LedgerError as exc:
                self.message_user(request, f"Payment #{payment_id}: {exc}", level=messages.ERROR)
                continue
            reversed_count += 1
        self.message_user(request, f"{reversed_count} payment(s) reversed.")


@admin.register(WorkerDailyTotal)
class WorkerDailyTotalAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = ("date", "worker", "branch", "total_collections", "total_customers_paid")
    list_filter = ("branch", "date")
    list_select_related = ("worker", "branch")


@admin.register(BranchDailyTotal)
class BranchDailyTotalAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = ("date", "branch", "total_collections", "total_payments", "total_workers_active")
    list_filter = ("branch", "date")
    list_select_related = ("branch",)


@admin.register(CompanyDailyTotal)
class CompanyDailyTotalAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = ("date", "company", "total_collections", "total_payments", "total_branches_active")
    list_filter = ("company", "date")
    list_select_related = ("company",)


@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
    list_display = ("timestamp", "actor_username", "actor_employee_id", "branch", "action", "reason", "object_type", "object_id")
    list_filter = ("action", "reason", "branch", "timestamp")
    search_fields = ("actor_username", "actor_employee_id", "action", "reason", "object_type", "object_id")
    readonly_fields = (
        "timestamp",
        "actor",
        "actor_username",
        "actor_employee_id",
        "branch",
        "action",
        "reason",
        "object_type",
        "object_id",
        "before_data",
        "after_data",
    )
    list_select_related = ("actor", "branch")

    def has_add_permission(self, request):
        return False
