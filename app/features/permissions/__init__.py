"""
Permission management feature module.

Resolves effective feature permissions for organization members from role
grants, per-user overrides and the platform operator / super admin bypass.
"""
