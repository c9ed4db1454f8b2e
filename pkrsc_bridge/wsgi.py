"""WSGI entrypoint for the bridge API."""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "pkrsc_bridge.settings")

application = get_wsgi_application()
