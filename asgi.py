"""
asgi.py -- Application assembly for Homebase.

The only file that imports both api/main.py and web/routes.py. web/ reuses
the route-level middleware from api/routing.py, but api/main.py never
imports web/, so the JSON API can be served and tested without the pages.

Run with:  uvicorn asgi:app --reload
           python main.py serve
"""

from api.main import app
from web.routes import router as web_router

# GET / (gated) and GET /sign-in.
app.include_router(web_router, tags=["Web UI"])
