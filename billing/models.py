"""
Database models for the billing backend.

The ledger owns three tables: :class:`Invoice`, :class:`Payment` and
:class:`Commission`.  Patients, referral sources and users are
collaborators from the wider hospital system; they are modelled here
only as far as the ledger needs to reference them.

Money is stored as ``Decimal`` in major currency units (rupees).  The
gateway's minor units (paise) never reach these tables.
"""
from __future__ import annotations

import uuid
from decimal import Decimal

from django.contrib.auth.models import AbstractUser
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import models

MONEY = dict(max_digits=12, decimal_places=2)
ZERO = Decimal('0.00')


class User(AbstractUser):
    """Staff user with a billing role.

    Roles gate what a user may do: cashiers take payments, accountants
    additionally refund and approve commissions, admins configure
    referral sources.
    """
    ROLE_CHOICES = [
        ('cashier', 'Cashier'),
        ('accountant', 'Accountant'),
        ('admin', 'Administrator'),
        ('super', 'Super Administrator'),
    ]
    role = models.CharField(max_length=16, choices=ROLE_CHOICES, default='cashier')

    def __str__(self) -> str:
        return f"{self.username} ({self.role})"


class ReferralSource(models.Model):
    """A doctor, broker or partner hospital that refers patients.

    The commission policy is read by the commission engine when an
    invoice of a referred patient is fully settled.  Tier bands are
    validated on save through :meth:`clean`.
    """
    COMMISSION_PERCENTAGE = 'percentage'
    COMMISSION_FIXED = 'fixed'
    COMMISSION_TIERED = 'tiered'
    COMMISSION_TYPE_CHOICES = [
        (COMMISSION_PERCENTAGE, 'Percentage'),
        (COMMISSION_FIXED, 'Fixed'),
        (COMMISSION_TIERED, 'Tiered'),
    ]

    tenant_ref = models.CharField(max_length=64, blank=True)
    code = models.CharField(max_length=32, unique=True)
    name = models.CharField(max_length=255)
    source_type = models.CharField(max_length=32, default='doctor')
    contact = models.CharField(max_length=32, blank=True)
    email = models.EmailField(blank=True)
    commission_type = models.CharField(max_length=16, choices=COMMISSION_TYPE_CHOICES, default=COMMISSION_PERCENTAGE)
    commission_value = models.DecimalField(default=ZERO, **MONEY)
    commission_tiers = models.JSONField(null=True, blank=True)
    is_active = models.BooleanField(default=True, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def clean(self):
        from billing.exceptions import ValidationError
        from billing.services.commission import validate_commission_tiers

        if self.commission_type == self.COMMISSION_TIERED:
            try:
                self.commission_tiers = validate_commission_tiers(self.commission_tiers)
            except ValidationError as exc:
                raise DjangoValidationError({'commission_tiers': str(exc.detail)})

    def __str__(self) -> str:
        return f"{self.name} ({self.code})"


class Patient(models.Model):
    """The slice of the patient record that billing needs."""
    tenant_ref = models.CharField(max_length=64, blank=True)
    mrn = models.CharField(max_length=32, unique=True)
    name = models.CharField(max_length=255)
    email = models.EmailField(blank=True)
    contact = models.CharField(max_length=32, blank=True)
    referral_source = models.ForeignKey(
        ReferralSource, null=True, blank=True, on_delete=models.SET_NULL, related_name='patients'
    )
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self) -> str:
        return f"{self.name} ({self.mrn})"


class Invoice(models.Model):
    """A billable record for a patient encounter.

    ``total`` is fixed at creation.  ``paid``, ``balance`` and ``status``
    are derived from the payment set and only change through
    :mod:`billing.services.ledger`.
    """
    STATUS_DRAFT = 'draft'
    STATUS_FINAL = 'final'
    STATUS_PARTIAL = 'partial'
    STATUS_PAID = 'paid'
    STATUS_CHOICES = [
        (STATUS_DRAFT, 'Draft'),
        (STATUS_FINAL, 'Final'),
        (STATUS_PARTIAL, 'Partially paid'),
        (STATUS_PAID, 'Paid'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    tenant_ref = models.CharField(max_length=64, blank=True)
    patient = models.ForeignKey(Patient, on_delete=models.PROTECT, related_name='invoices')
    encounter_ref = models.CharField(max_length=64, blank=True)
    invoice_type = models.CharField(max_length=8, default='OP')
    items = models.JSONField(default=list)
    subtotal = models.DecimalField(**MONEY)
    discount = models.DecimalField(default=ZERO, **MONEY)
    tax = models.DecimalField(default=ZERO, **MONEY)
    total = models.DecimalField(**MONEY)
    paid = models.DecimalField(default=ZERO, **MONEY)
    balance = models.DecimalField(**MONEY)
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_DRAFT, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['patient', 'created_at'], name='inv_patient_created_idx'),
        ]

    @property
    def number(self) -> str:
        return str(self.id)[:8].upper()

    def __str__(self) -> str:
        return f"INV-{self.number} {self.status} {self.paid}/{self.total}"


class Payment(models.Model):
    """One payment attempt or settlement against an invoice."""
    STATUS_INITIATED = 'initiated'
    STATUS_CAPTURED = 'captured'
    STATUS_FAILED = 'failed'
    STATUS_REFUNDED = 'refunded'
    STATUS_CHOICES = [
        (STATUS_INITIATED, 'Initiated'),
        (STATUS_CAPTURED, 'Captured'),
        (STATUS_FAILED, 'Failed'),
        (STATUS_REFUNDED, 'Refunded'),
    ]

    MODE_RAZORPAY = 'razorpay'
    MODE_CHOICES = [
        ('cash', 'Cash'),
        ('card', 'Card'),
        ('upi', 'UPI'),
        ('cheque', 'Cheque'),
        ('bank_transfer', 'Bank transfer'),
        ('insurance', 'Insurance'),
        (MODE_RAZORPAY, 'Online (Razorpay)'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    invoice = models.ForeignKey(Invoice, on_delete=models.PROTECT, related_name='payments')
    amount = models.DecimalField(**MONEY)
    mode = models.CharField(max_length=16, choices=MODE_CHOICES)
    gateway_order_id = models.CharField(max_length=64, blank=True, db_index=True)
    gateway_payment_id = models.CharField(max_length=64, blank=True, db_index=True)
    gateway_signature = models.CharField(max_length=128, blank=True)
    gateway_status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_INITIATED, db_index=True)
    gateway_response = models.JSONField(null=True, blank=True)
    refund_id = models.CharField(max_length=64, blank=True)
    refund_amount = models.DecimalField(null=True, blank=True, **MONEY)
    refunded_at = models.DateTimeField(null=True, blank=True)
    refund_requested_at = models.DateTimeField(null=True, blank=True)
    transaction_ref = models.CharField(max_length=100, blank=True)
    paid_at = models.DateTimeField(null=True, blank=True)
    received_by = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name='payments_received')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['created_at']
        constraints = [
            models.CheckConstraint(
                condition=models.Q(refund_amount__isnull=True) | models.Q(refund_amount__lte=models.F('amount')),
                name='payment_refund_within_amount',
            ),
        ]

    @property
    def net_amount(self) -> Decimal:
        """Amount still held after any refund."""
        return self.amount - (self.refund_amount or ZERO)

    def __str__(self) -> str:
        return f"{self.mode} {self.amount} {self.gateway_status} (inv {self.invoice_id})"


class CommissionPayout(models.Model):
    """A settlement of approved commissions to one referral source."""
    payout_number = models.CharField(max_length=16, unique=True)
    referral_source = models.ForeignKey(ReferralSource, on_delete=models.PROTECT, related_name='payouts')
    from_date = models.DateTimeField()
    to_date = models.DateTimeField()
    total_amount = models.DecimalField(**MONEY)
    payment_mode = models.CharField(max_length=32)
    payment_reference = models.CharField(max_length=100, blank=True)
    payment_date = models.DateTimeField(auto_now_add=True)
    paid_by = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name='commission_payouts')
    remarks = models.TextField(blank=True)
    status = models.CharField(max_length=16, default='processed')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self) -> str:
        return f"{self.payout_number} {self.total_amount}"


class Commission(models.Model):
    """Referral commission owed when an invoice is fully settled.

    The commission policy is copied from the referral source at trigger
    time so that later policy edits do not rewrite history.
    """
    STATUS_PENDING = 'pending'
    STATUS_APPROVED = 'approved'
    STATUS_PAID = 'paid'
    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_APPROVED, 'Approved'),
        (STATUS_PAID, 'Paid'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    invoice = models.OneToOneField(Invoice, on_delete=models.PROTECT, related_name='commission')
    patient = models.ForeignKey(Patient, on_delete=models.PROTECT, related_name='commissions')
    referral_source = models.ForeignKey(ReferralSource, on_delete=models.PROTECT, related_name='commissions')
    invoice_amount = models.DecimalField(**MONEY)
    commission_type = models.CharField(max_length=16)
    commission_rate = models.DecimalField(null=True, blank=True, max_digits=7, decimal_places=2)
    commission_amount = models.DecimalField(**MONEY)
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True)
    approved_by = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name='commissions_approved')
    approved_at = models.DateTimeField(null=True, blank=True)
    paid_at = models.DateTimeField(null=True, blank=True)
    payout = models.ForeignKey(CommissionPayout, null=True, blank=True, on_delete=models.SET_NULL, related_name='commissions')
    remarks = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['referral_source', 'status', 'created_at'], name='comm_source_status_idx'),
        ]

    def __str__(self) -> str:
        return f"Commission {self.commission_amount} for inv {self.invoice_id} ({self.status})"


class AuditEvent(models.Model):
    user = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True)
    action = models.CharField(max_length=64)
    object_type = models.CharField(max_length=64, blank=True, null=True)
    object_id = models.CharField(max_length=64, blank=True, null=True)
    detail = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=['action', 'created_at'], name='audit_action_created_idx'),
            models.Index(fields=['object_type', 'object_id', 'created_at'], name='audit_object_created_idx'),
        ]

    def __str__(self) -> str:
        return f"{self.action}:{self.object_type}/{self.object_id}"
