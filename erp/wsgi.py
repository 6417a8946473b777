"""
WSGI config for the ERP billing backend.

It exposes the WSGI callable as a module-level variable named ``application``.
Payment webhooks are plain HTTP, so a WSGI server is enough unless the
invoice update websocket is needed (see ``erp.asgi``).
"""
import os

from django.core.wsgi import get_wsgi_application  # type: ignore

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'erp.settings')

application = get_wsgi_application()
