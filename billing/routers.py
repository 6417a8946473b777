"""
URL mappings for the billing API.

Paths carry no trailing slash, matching the front-end's endpoint table.
"""
from django.urls import include, path

from .auth_views import jwt_logout_view, jwt_refresh_view, login_view
from .views import commissions, health, invoices, payments, referral_sources

urlpatterns = [
    path('', include('django_prometheus.urls')),
    path('healthz', health.healthz),
    # Authentication
    path('api/auth/login', login_view, name='login_view'),
    path('api/auth/refresh', jwt_refresh_view, name='jwt_refresh_view'),
    path('api/auth/logout', jwt_logout_view, name='jwt_logout_view'),
    # Online payments
    path('api/payments/config', payments.payment_config, name='payment_config'),
    path('api/payments/create-order', payments.create_order, name='payment_create_order'),
    path('api/payments/verify', payments.verify_payment, name='payment_verify'),
    path('api/payments/webhook', payments.payment_webhook, name='payment_webhook'),
    path('api/payments/<uuid:payment_id>/refund', payments.refund_payment, name='payment_refund'),
    # Invoices
    path('api/invoices', invoices.invoices, name='invoices'),
    path('api/invoices/<uuid:invoice_id>', invoices.invoice_detail, name='invoice_detail'),
    path('api/invoices/<uuid:invoice_id>/payment', invoices.invoice_payment, name='invoice_payment'),
    # Referral sources and commissions
    path('api/referral-sources', referral_sources.referral_sources, name='referral_sources'),
    path('api/referral-sources/<int:source_id>', referral_sources.referral_source_detail, name='referral_source_detail'),
    path('api/commissions', commissions.commissions, name='commissions'),
    path('api/commissions/summary', commissions.commission_summary, name='commission_summary'),
    path('api/commissions/<uuid:commission_id>/approve', commissions.approve_commission, name='commission_approve'),
    path('api/commission-payouts', commissions.commission_payouts, name='commission_payouts'),
]
