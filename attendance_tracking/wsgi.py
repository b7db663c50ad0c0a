"""
WSGI config for the attendance_tracking project.

It exposes the WSGI callable as a module-level variable named ``application``.
"""

import os

from django.core.wsgi import get_wsgi_application

# WSGI is typically invoked by the production application server, so default to
# the hardened production settings. Developers running local WSGI servers can
# override this by exporting DJANGO_SETTINGS_MODULE=attendance_tracking.settings.
os.environ.setdefault(
    "DJANGO_SETTINGS_MODULE",
    "attendance_tracking.settings.production",
)

application = get_wsgi_application()
