"""API Routes Module"""
from .routes import include_routers, get_portal

__all__ = ['include_routers', 'get_portal']
