"""
Mapping between directory entries and local user records.

The user mapping setting is a ``{user_field: ldap_attribute}`` table edited
by administrators. It is turned into an ordered tuple of AttributeMappingRow
with the ``username`` row first, which drives both directions of the
translation.
"""

import logging
from typing import Any, Dict, Mapping, NamedTuple, Optional, Sequence, Tuple

from ldap_bridge.ldap_client import MalformedEntry
from ldap_bridge.models import AttributeFieldAccessor, FieldAccessor

logger = logging.getLogger(__name__)

USERNAME_FIELD = 'username'
PASSWORD_FIELD = 'password'
DN_FIELD = 'dn'
COUNT_MARKER = 'count'


class AttributeMappingRow(NamedTuple):
    directory_attribute: str
    local_field: str
    accessor_method: str


AttributeMapping = Tuple[AttributeMappingRow, ...]


def setter_name(field_name: str) -> str:
    """``firstName`` -> ``setFirstName``."""
    return 'set' + field_name[:1].upper() + field_name[1:]


def decode_value(raw: Any) -> Any:
    """
    Decode an attribute value as returned by the directory protocol.

    A counted structure without a count marker, or with a count of 1, yields
    its first element. Any other count yields the elements after the marker
    position, i.e. indices 1 and up. Bare scalars are returned unchanged;
    plain lists carry no marker and yield their first element.
    """
    if isinstance(raw, Mapping):
        if COUNT_MARKER not in raw or raw[COUNT_MARKER] == 1:
            return raw.get(0)
        indices = sorted(key for key in raw if isinstance(key, int) and key >= 1)
        return [raw[index] for index in indices]

    if isinstance(raw, (list, tuple)):
        return raw[0] if raw else None

    return raw


class DirectoryAttributeMapper:
    """Translates between LocalUser records and directory entries."""

    def __init__(self, field_accessor: Optional[FieldAccessor] = None):
        self.field_accessor = field_accessor or AttributeFieldAccessor()

    @staticmethod
    def build_mapping(raw_table: Optional[Mapping[str, Any]]) -> AttributeMapping:
        """
        Build the ordered attribute mapping from the raw user mapping table.

        Args:
            raw_table: ``{user_field: ldap_attribute}``

        Returns:
            Rows with ``username`` first, or an empty tuple when no username
            attribute is mapped, which disables directory sync and export
        """
        defined = {
            field: str(attribute).strip()
            for field, attribute in (raw_table or {}).items()
            if attribute is not None and str(attribute).strip()
        }
        if USERNAME_FIELD not in defined:
            logger.warning("User mapping has no username attribute; directory sync is disabled")
            return ()

        ordered = [(USERNAME_FIELD, defined.pop(USERNAME_FIELD))] + list(defined.items())
        return tuple(
            AttributeMappingRow(attribute, field, setter_name(field))
            for field, attribute in ordered
        )

    def to_directory_entry(self, user: Any, mapping: Sequence[AttributeMappingRow],
                           export_object_class: str) -> Dict[str, Any]:
        """Build the entry written to the directory for a local user."""
        entry = {'objectClass': [export_object_class]}
        for row in mapping:
            entry[row.directory_attribute] = self.field_accessor.get(user, row.local_field)
        return entry

    def distinguished_name(self, user: Any, username_attr: str, export_base_dn: str) -> str:
        """Stored DN of the user, or one built under the export base DN."""
        dn = self.field_accessor.get(user, DN_FIELD)
        if dn:
            return dn
        username = self.field_accessor.get(user, USERNAME_FIELD)
        return f"{username_attr}={username},{export_base_dn}"

    def hydrate(self, user: Any, entry: Mapping[str, Any],
                mapping: Sequence[AttributeMappingRow]) -> Any:
        """
        Copy directory values onto a local user.

        The user's password is never taken from the directory, and ``dn`` is
        always set from the entry.

        Raises:
            MalformedEntry: If the entry has no ``dn``
        """
        dn = entry.get(DN_FIELD)
        if not dn:
            raise MalformedEntry(f"Directory entry has no dn: {sorted(map(str, entry))}")

        original_password = self.field_accessor.get(user, PASSWORD_FIELD)

        for row in mapping:
            if row.directory_attribute not in entry:
                logger.debug(f"Entry {dn} has no {row.directory_attribute} attribute")
                continue
            value = decode_value(entry[row.directory_attribute])
            self.field_accessor.set(user, row.local_field, value, row.accessor_method)

        self.field_accessor.set(user, PASSWORD_FIELD, original_password, setter_name(PASSWORD_FIELD))
        self.field_accessor.set(user, DN_FIELD, dn, setter_name(DN_FIELD))
        return user
