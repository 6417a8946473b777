"""
Django admin registrations for the billing models.

Ledger rows are read-only here: invoices, payments and commissions only
change through the billing services, so the admin offers inspection and
referral-source configuration but no deletes.
"""
from django.contrib import admin

from .models import AuditEvent, Commission, CommissionPayout, Invoice, Patient, Payment, ReferralSource, User


class ReadOnlyLedgerAdmin(admin.ModelAdmin):
    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    list_display = ('username', 'role', 'is_staff', 'is_superuser')
    list_filter = ('role',)
    search_fields = ('username', 'first_name', 'last_name')


@admin.register(ReferralSource)
class ReferralSourceAdmin(admin.ModelAdmin):
    list_display = ('code', 'name', 'source_type', 'commission_type', 'commission_value', 'is_active')
    list_filter = ('commission_type', 'is_active')
    search_fields = ('code', 'name')


@admin.register(Patient)
class PatientAdmin(admin.ModelAdmin):
    list_display = ('mrn', 'name', 'contact', 'referral_source')
    search_fields = ('mrn', 'name', 'contact')


class PaymentInline(admin.TabularInline):
    model = Payment
    extra = 0
    can_delete = False
    readonly_fields = ('amount', 'mode', 'gateway_status', 'gateway_order_id', 'gateway_payment_id',
                       'refund_amount', 'paid_at', 'refunded_at')
    fields = readonly_fields

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Invoice)
class InvoiceAdmin(ReadOnlyLedgerAdmin):
    list_display = ('id', 'patient', 'status', 'total', 'paid', 'balance', 'created_at')
    list_filter = ('status', 'invoice_type')
    search_fields = ('id', 'patient__mrn', 'patient__name', 'encounter_ref')
    inlines = [PaymentInline]


@admin.register(Payment)
class PaymentAdmin(ReadOnlyLedgerAdmin):
    list_display = ('id', 'invoice', 'mode', 'amount', 'gateway_status', 'refund_amount', 'created_at')
    list_filter = ('mode', 'gateway_status')
    search_fields = ('id', 'gateway_order_id', 'gateway_payment_id', 'transaction_ref')


@admin.register(Commission)
class CommissionAdmin(ReadOnlyLedgerAdmin):
    list_display = ('id', 'referral_source', 'invoice', 'commission_amount', 'status', 'created_at')
    list_filter = ('status', 'commission_type')


@admin.register(CommissionPayout)
class CommissionPayoutAdmin(ReadOnlyLedgerAdmin):
    list_display = ('payout_number', 'referral_source', 'total_amount', 'payment_mode', 'payment_date')


@admin.register(AuditEvent)
class AuditEventAdmin(ReadOnlyLedgerAdmin):
    list_display = ('action', 'object_type', 'object_id', 'user', 'created_at')
    list_filter = ('action',)
    search_fields = ('object_id',)
