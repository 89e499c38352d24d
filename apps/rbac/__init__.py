"""
RBAC (Role-Based Access Control) application.

Provides ranked roles with:
- Role permission defaults plus per-staff grants with revocation history
- Cached permission resolution
- Parent/child user hierarchy checks
- Allow/deny access decisions with missing-permission reporting
"""
