"""Lapor Core - API Routers"""
from .reports import router as reports_router
from .scheduler import router as scheduler_router

__all__ = [
    "reports_router",
    "scheduler_router",
]
