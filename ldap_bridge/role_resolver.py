"""
Role derivation from directory group entries.
"""

import logging
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Set

from ldap_bridge.attribute_mapper import decode_value
from ldap_bridge.models import RoleReferenceLookup

logger = logging.getLogger(__name__)

RoleMapping = Dict[str, FrozenSet[Any]]

# Accepted key names for a raw role mapping entry, first match wins
DIRECTORY_ROLE_KEYS = ('ldapName', 'directoryRoleName', 'dn')
LOCAL_ROLES_KEYS = ('crmRoles', 'localRoleIds', 'roles')


def _first_present(raw: Mapping[str, Any], keys) -> Any:
    for key in keys:
        if key in raw:
            return raw[key]
    return None


class DirectoryRoleResolver:
    """Resolves local roles for a user from the directory groups they belong to."""

    def __init__(self, role_lookup: Optional[RoleReferenceLookup] = None):
        self.role_lookup = role_lookup or RoleReferenceLookup()

    @staticmethod
    def resolve_directory_role_values(entry: Mapping[str, Any], role_id_attribute: str) -> List[Any]:
        """Role identifiers carried by a directory role entry, empty if the attribute is absent."""
        if role_id_attribute not in entry:
            return []
        value = decode_value(entry[role_id_attribute])
        if isinstance(value, list):
            return [item for item in value if item]
        return [value] if value else []

    @staticmethod
    def map_to_local_roles(directory_role_values: Iterable[Any], role_mapping: Mapping[str, Iterable[Any]]) -> Set[Any]:
        """Union of local roles mapped to the given directory roles; unmapped values are skipped."""
        roles = set()
        for value in directory_role_values:
            mapped = role_mapping.get(value)
            if mapped is None:
                logger.debug(f"No local roles mapped for directory role {value!r}")
                continue
            roles.update(mapped)
        return roles

    @staticmethod
    def build_role_mapping_table(raw_mapping_list: Optional[Iterable[Mapping[str, Any]]]) -> RoleMapping:
        """
        Build the role mapping table from the raw setting.

        Args:
            raw_mapping_list: entries like ``{'ldapName': 'Admins', 'crmRoles': [1, 2]}``

        Returns:
            ``{directory_role: frozenset(local_role_ids)}``, with ids of repeated
            directory roles unioned
        """
        table: Dict[str, Set[Any]] = {}
        for raw in raw_mapping_list or []:
            name = _first_present(raw, DIRECTORY_ROLE_KEYS)
            if not name:
                logger.warning(f"Skipping role mapping without a directory role name: {raw}")
                continue
            local_roles = _first_present(raw, LOCAL_ROLES_KEYS) or []
            if not isinstance(local_roles, (list, tuple, set, frozenset)):
                local_roles = [local_roles]
            table.setdefault(name, set()).update(local_roles)
        return {name: frozenset(roles) for name, roles in table.items()}

    def apply_roles(self, user: Any, local_role_ids: Iterable[Any],
                    role_lookup: Optional[RoleReferenceLookup] = None):
        """Attach role references for each local role id to the user."""
        role_ids = list(local_role_ids)
        if not role_ids:
            return

        lookup = role_lookup or self.role_lookup
        references = [lookup.reference(role_id) for role_id in role_ids]

        add_role = getattr(user, 'add_role', None)
        for reference in references:
            if callable(add_role):
                add_role(reference)
            else:
                user.setdefault('roles', []).append(reference)
