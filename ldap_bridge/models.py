"""
Local records the directory is synchronised with.

LocalUser is an open record: the user mapping decides which
fields exist, so fields such as ``firstName`` are set as plain attributes.
Field access goes through a FieldAccessor chosen per record type when the
sync service is configured.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional


@dataclass(frozen=True)
class RoleReference:
    """Reference to a local role by id, without the role record itself."""
    role_id: Any


class RoleReferenceLookup:
    """Produces role references without loading role records."""

    def reference(self, role_id: Any) -> RoleReference:
        return RoleReference(role_id)


class LocalUser:
    """A local user account fed from the directory."""

    discriminator = 'user'

    def __init__(self, username: Optional[str] = None, password: Optional[str] = None,
                 dn: Optional[str] = None, **fields: Any):
        self.username = username
        self.password = password
        self.dn = dn
        self.roles: List[RoleReference] = []
        for name, value in fields.items():
            setattr(self, name, value)

    def add_role(self, role: RoleReference):
        if role not in self.roles:
            self.roles.append(role)

    @property
    def role_ids(self) -> List[Any]:
        return [role.role_id for role in self.roles]

    def to_dict(self) -> Dict[str, Any]:
        data = {key: value for key, value in vars(self).items() if key not in ('roles', 'password')}
        data['roles'] = self.role_ids
        return data

    def __repr__(self):
        return f"LocalUser(username={self.username!r}, dn={self.dn!r})"


class FieldAccessor:
    """Generic get/set of a named field on a record."""

    def get(self, record: Any, field_name: str) -> Any:
        raise NotImplementedError

    def set(self, record: Any, field_name: str, value: Any, setter: Optional[str] = None):
        raise NotImplementedError


class AttributeFieldAccessor(FieldAccessor):
    """
    Accessor for objects.

    Setting prefers the record's own setter method (``setFirstName``) when it
    defines one, otherwise the attribute is assigned directly.
    """

    def get(self, record: Any, field_name: str) -> Any:
        return getattr(record, field_name, None)

    def set(self, record: Any, field_name: str, value: Any, setter: Optional[str] = None):
        method = getattr(record, setter, None) if setter else None
        if callable(method):
            method(value)
        else:
            setattr(record, field_name, value)


class MappingFieldAccessor(FieldAccessor):
    """Accessor for dict-like records."""

    def get(self, record: Mapping, field_name: str) -> Any:
        return record.get(field_name)

    def set(self, record: Dict, field_name: str, value: Any, setter: Optional[str] = None):
        record[field_name] = value


def accessor_for(record_type: type) -> FieldAccessor:
    """Pick the field accessor matching a record type."""
    if issubclass(record_type, Mapping):
        return MappingFieldAccessor()
    return AttributeFieldAccessor()

