"""
Issues Interfaces Layer
=======================

Interface adapters (controllers) for the issues module.

This is the outermost layer - handles HTTP requests/responses and
delegates to application services.
"""

from grievance.issues.interfaces.controllers import router as issues_router

__all__ = ["issues_router"]
