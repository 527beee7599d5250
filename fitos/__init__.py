"""
FitOS Backend

Multi-tenant fitness and gym-management API: tenant-scoped authentication,
role-based access, billing, advertisements, push notifications and
platform administration.
"""

__version__ = "1.0.0"
