"""
Shared Kernel Module
====================

This module contains shared infrastructure used by the compliance bounded
context: structured logging and HTTP middleware.

DO NOT add SLA or escalation business logic to the shared kernel.
"""

__version__ = "1.0.0"
