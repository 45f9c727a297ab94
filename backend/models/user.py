"""
Field Reporting - User model
Salesmen fill weekly reports; admins read analytics and co-attend JSVs.
"""

from enum import Enum

UNASSIGNED = "Unassigned"


class UserRole(str, Enum):
    SALESMAN = "salesman"
    ADMIN = "admin"
