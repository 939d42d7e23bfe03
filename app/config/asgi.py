"""
ASGI config for the settlement engine.

Exposes the ASGI callable as a module-level variable named `application`.
Uvicorn serves it in production; webhook and API views are plain
synchronous Django views running in the thread pool.
"""

import os

from django.core.asgi import get_asgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

application = get_asgi_application()
