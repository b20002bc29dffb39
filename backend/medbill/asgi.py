"""
ASGI config for the medbill project.

The Django application is wrapped by the Socket.IO server so billing and
claim updates can be pushed to connected dashboards.
"""

import os

from django.core.asgi import get_asgi_application
import socketio

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'medbill.settings')

django_asgi_app = get_asgi_application()

from .sio import sio  # noqa: E402

application = socketio.ASGIApp(sio, django_asgi_app)
