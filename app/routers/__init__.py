"""
API routers package
"""

from app.routers.matches import router as matches_router
from app.routers.items import router as items_router
