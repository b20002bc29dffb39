"""
WSGI config for the medbill project.
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'medbill.settings')

application = get_wsgi_application()
