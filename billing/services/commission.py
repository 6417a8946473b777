import logging
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional

from django.db import IntegrityError, transaction
from django.db.models import Count, Q, Sum
from django.utils import timezone

from billing.exceptions import InvalidStateError, NotFoundError, ValidationError
from billing.models import Commission, CommissionPayout, Invoice, ReferralSource, ZERO

logger = logging.getLogger(__name__)

PAYOUT_NUMBER_ATTEMPTS = 5

CENT = Decimal('0.01')


def _dec(value, field: str) -> Decimal:
    try:
        d = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f'{field} must be a number')
    if not d.is_finite():
        raise ValidationError(f'{field} must be a number')
    return d


def validate_commission_tiers(tiers) -> list:
    """Normalize a tier band list and reject malformed configurations.

    Bands are ``{min, max, value}`` with ``max`` null for an open-ended top
    band.  They must be sorted by ``min``, must not overlap, and only the
    last band may be open-ended.  Returns the list with numbers as strings
    so it round-trips through JSON without float drift.
    """
    if not isinstance(tiers, list) or not tiers:
        raise ValidationError('commission tiers must be a non-empty list')

    normalized = []
    prev_max: Optional[Decimal] = None
    for idx, band in enumerate(tiers):
        if not isinstance(band, dict):
            raise ValidationError(f'tier {idx} must be an object')
        lo = _dec(band.get('min'), f'tier {idx} min')
        hi = band.get('max')
        hi = None if hi is None else _dec(hi, f'tier {idx} max')
        value = _dec(band.get('value'), f'tier {idx} value')
        if lo < 0:
            raise ValidationError(f'tier {idx} min must be >= 0')
        if hi is not None and hi <= lo:
            raise ValidationError(f'tier {idx} max must be greater than min')
        if value < 0:
            raise ValidationError(f'tier {idx} value must be >= 0')
        if idx > 0:
            if prev_max is None:
                raise ValidationError('only the last tier may be open-ended')
            if lo < prev_max:
                raise ValidationError(f'tier {idx} overlaps the previous tier')
        prev_max = hi
        normalized.append({'min': str(lo), 'max': None if hi is None else str(hi), 'value': str(value)})
    return normalized


def compute_commission(invoice_amount, source: ReferralSource) -> Decimal:
    amount = Decimal(str(invoice_amount))
    ctype = source.commission_type
    if ctype == ReferralSource.COMMISSION_PERCENTAGE:
        result = amount * Decimal(str(source.commission_value)) / 100
    elif ctype == ReferralSource.COMMISSION_FIXED:
        result = Decimal(str(source.commission_value))
    elif ctype == ReferralSource.COMMISSION_TIERED:
        result = ZERO
        # first match wins; bands were validated when the source was saved
        for band in source.commission_tiers or []:
            lo = Decimal(str(band.get('min', 0)))
            hi = band.get('max')
            if amount >= lo and (hi is None or amount < Decimal(str(hi))):
                result = amount * Decimal(str(band.get('value', 0))) / 100
                break
    else:
        return ZERO
    return result.quantize(CENT, rounding=ROUND_HALF_UP)


def trigger_commission(invoice: Invoice) -> Optional[Commission]:
    """Create the pending commission for a settled invoice of a referred patient.

    Must run inside the capture transaction.  Returns ``None`` when the
    invoice is not settled, the patient was not referred, a commission
    already exists, or the policy yields zero.
    """
    if invoice.balance > 0:
        return None
    patient = invoice.patient
    source = patient.referral_source
    if source is None:
        return None
    if Commission.objects.filter(invoice_id=invoice.pk).exists():
        return None

    amount = compute_commission(invoice.total, source)
    if amount <= 0:
        return None

    rate = source.commission_value if source.commission_type == ReferralSource.COMMISSION_PERCENTAGE else None
    try:
        with transaction.atomic():
            commission = Commission.objects.create(
                invoice=invoice,
                patient=patient,
                referral_source=source,
                invoice_amount=invoice.total,
                commission_type=source.commission_type,
                commission_rate=rate,
                commission_amount=amount,
            )
    except IntegrityError:
        # lost the race to another capture on the same invoice
        return None
    logger.info('Commission %s created for invoice %s source=%s amount=%s',
                commission.pk, invoice.pk, source.code, amount)
    return commission


def approve_commission(commission_id, user, remarks: str = '') -> Commission:
    with transaction.atomic():
        commission = Commission.objects.select_for_update().filter(pk=commission_id).first()
        if not commission:
            raise NotFoundError('commission not found')
        if commission.status != Commission.STATUS_PENDING:
            raise InvalidStateError(f'commission is {commission.status}, only pending can be approved')
        commission.status = Commission.STATUS_APPROVED
        commission.approved_by = user
        commission.approved_at = timezone.now()
        if remarks:
            commission.remarks = remarks
        commission.save(update_fields=['status', 'approved_by', 'approved_at', 'remarks', 'updated_at'])
    return commission


def _next_payout_number() -> str:
    last = CommissionPayout.objects.order_by('-id').values_list('payout_number', flat=True).first()
    seq = int(last[4:]) + 1 if last and last[4:].isdigit() else 1
    return f"CPAY{seq:06d}"


def create_payout(*, referral_source_id, from_date, to_date, payment_mode: str,
                  payment_reference: str = '', remarks: str = '', user=None) -> CommissionPayout:
    source = ReferralSource.objects.filter(pk=referral_source_id).first()
    if not source:
        raise NotFoundError('referral source not found')
    if from_date > to_date:
        raise ValidationError('from_date must not be after to_date')

    with transaction.atomic():
        commissions = list(
            Commission.objects.select_for_update().filter(
                referral_source=source,
                status=Commission.STATUS_APPROVED,
                created_at__gte=from_date,
                created_at__lte=to_date,
            )
        )
        if not commissions:
            raise ValidationError('no approved commissions in this period')
        total = sum((c.commission_amount for c in commissions), ZERO)
        for attempt in range(1, PAYOUT_NUMBER_ATTEMPTS + 1):
            try:
                with transaction.atomic():
                    payout = CommissionPayout.objects.create(
                        payout_number=_next_payout_number(),
                        referral_source=source,
                        from_date=from_date,
                        to_date=to_date,
                        total_amount=total,
                        payment_mode=payment_mode,
                        payment_reference=payment_reference,
                        paid_by=user,
                        remarks=remarks,
                    )
                break
            except IntegrityError:
                # another payout took the number first
                if attempt == PAYOUT_NUMBER_ATTEMPTS:
                    raise
                logger.info('Payout number collision for source %s, retry %s', source.code, attempt)
        now = timezone.now()
        Commission.objects.filter(pk__in=[c.pk for c in commissions]).update(
            status=Commission.STATUS_PAID, paid_at=now, payout=payout, updated_at=now
        )
    logger.info('Payout %s for source %s: %s commissions, total %s',
                payout.payout_number, source.code, len(commissions), total)
    return payout


def commission_summary(referral_source_id=None) -> list:
    qs = Commission.objects.all()
    if referral_source_id:
        qs = qs.filter(referral_source_id=referral_source_id)
    rows = (
        qs.values('referral_source_id', 'referral_source__code', 'referral_source__name')
        .annotate(
            count=Count('id'),
            pending=Sum('commission_amount', filter=Q(status=Commission.STATUS_PENDING)),
            approved=Sum('commission_amount', filter=Q(status=Commission.STATUS_APPROVED)),
            paid=Sum('commission_amount', filter=Q(status=Commission.STATUS_PAID)),
        )
        .order_by('referral_source__code')
    )
    return [
        {
            'referralSourceId': r['referral_source_id'],
            'code': r['referral_source__code'],
            'name': r['referral_source__name'],
            'count': r['count'],
            'pending': r['pending'] or ZERO,
            'approved': r['approved'] or ZERO,
            'paid': r['paid'] or ZERO,
        }
        for r in rows
    ]
