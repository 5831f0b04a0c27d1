"""
Scope Audit Engine
==================
A read-only audit of Azure role and policy assignments across the
management group / subscription / resource group / resource hierarchy.
Walks one or more root scopes, collects the assignments effective at each
scope, classifies them and produces one merged report.

WARNING: This tool operates in STRICT READ-ONLY mode.
         No write operations will be performed against the tenant.
"""

__version__ = "1.0.0"
__author__ = "Scope Audit Engine"
__mode__ = "READ-ONLY"
