"""Billing application for the hospital ERP.

Owns the invoice ledger, online payment reconciliation against the
Razorpay gateway, and referral commissions.  Route registrations live in
``billing.routers``; business rules live under ``billing.services``.
"""
