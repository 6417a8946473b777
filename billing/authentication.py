"""
Legacy ``Token`` header authentication.

Front-desk terminals that predate JWT keep sending ``Authorization:
Token <key>``; the login view issues both kinds of credential.
"""
from __future__ import annotations

from rest_framework import authentication


class TokenAuthentication(authentication.TokenAuthentication):
    keyword = 'Token'
