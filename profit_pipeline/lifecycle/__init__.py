"""
Tenant Lifecycle Module
"""
from .cleanup import CleanupOrchestrator
from .installation import TenantService

__all__ = [
    "CleanupOrchestrator",
    "TenantService",
]
