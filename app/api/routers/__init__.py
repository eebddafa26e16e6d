"""
app/api/routers package marker.
"""

from app.api.routers.cfp import router as cfp_router

__all__ = ["cfp_router"]
