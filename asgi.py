"""
asgi.py -- ASGI entry point for AuthStarter.

Servers import the application from here rather than from api/main.py, so
the server command stays stable if the app is ever assembled from more than
one layer.

Run with:  uvicorn asgi:app --reload
           python main.py serve
"""

from api.main import app

__all__ = ["app"]
