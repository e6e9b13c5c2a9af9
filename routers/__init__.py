"""
ROUTERS - FastAPI Router Modules

Usage:
    from routers import slips_router

    app.include_router(slips_router)
"""

from .slips import router as slips_router

__all__ = [
    'slips_router',
]
