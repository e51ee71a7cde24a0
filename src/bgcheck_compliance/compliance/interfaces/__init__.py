"""
Compliance Interfaces Layer
===========================

Interface adapters (controllers) for compliance tracking.

This is the outermost layer - handles HTTP requests/responses and
delegates to the ComplianceEngine.
"""

from bgcheck_compliance.compliance.interfaces.controllers import compliance_router

__all__ = ["compliance_router"]
