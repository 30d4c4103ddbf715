"""
LDAP bridge - map directory entries onto local users and roles.

This package hydrates local user records from LDAP entries, derives local
roles from directory group membership, exports local users back to the
directory, and provides the entity serialization config accessors used when
those records are turned into arrays.
"""

__version__ = "1.0.0"
__author__ = "LDAP Bridge Team"
