"""
Пакет routers содержит модули маршрутизации для API FastAPI.
"""

from .raffles import router as raffles_router
from .users import router as users_router

__all__ = ['raffles_router', 'users_router']
