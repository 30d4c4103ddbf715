"""
Entity serialization configuration helpers.

An entity config is a plain nested dictionary describing how an entity type
is turned into an array: which fields are excluded, where their values come
from (property paths) and which metadata pseudo-fields are exposed.

Example:
    {
        'exclusion_policy': 'all',
        'disable_partial_load': False,
        'fields': {
            'id': None,
            'type': {'property_path': '__discriminator__'},
            'owner': {'property_path': 'owner.username'},
            'secret': {'exclude': True}
        },
        'order_by': {'id': 'ASC'}
    }

All accessors are total: missing keys degrade to defaults so sparse configs
can be written by hand.
"""

from enum import Enum
from typing import Any, Callable, Dict, List, Optional


class ExclusionPolicy(str, Enum):
    """Which fields are serialized when no field config says otherwise."""
    ALL = 'all'
    NONE = 'none'


# A field which can be used to get the discriminator value of an entity, e.g.
#   'fields': {'type': {'property_path': '__discriminator__'}}
DISCRIMINATOR = '__discriminator__'

# A field which can be used to get the class name of an entity, e.g.
#   'fields': {'entity': {'property_path': '__class__'}}
CLASS_NAME = '__class__'

METADATA_PREFIX = '__'
PATH_SEPARATOR = '.'

EXCLUSION_POLICY = 'exclusion_policy'
EXCLUSION_POLICY_ALL = ExclusionPolicy.ALL.value
EXCLUSION_POLICY_NONE = ExclusionPolicy.NONE.value

DISABLE_PARTIAL_LOAD = 'disable_partial_load'
HINTS = 'hints'
FIELDS = 'fields'
ORDER_BY = 'order_by'
POST_SERIALIZE = 'post_serialize'

PROPERTY_PATH = 'property_path'
EXCLUDE = 'exclude'


def get_array_value(config: Dict[str, Any], key: str) -> Any:
    """Return ``config[key]`` or an empty dict when it is missing or None."""
    value = config.get(key)
    return value if value is not None else {}


def exclusion_policy(config: Dict[str, Any]) -> ExclusionPolicy:
    """
    Get the exclusion policy of an entity config.

    Args:
        config: The config of an entity

    Returns:
        ExclusionPolicy.NONE when the policy is not set or not recognised
    """
    value = config.get(EXCLUSION_POLICY)
    if value == ExclusionPolicy.ALL:
        return ExclusionPolicy.ALL
    return ExclusionPolicy.NONE


def is_exclude_all(config: Dict[str, Any]) -> bool:
    """Check whether only explicitly configured fields are serialized."""
    return config.get(EXCLUSION_POLICY) == ExclusionPolicy.ALL


def is_field_excluded(field_config: Optional[Dict[str, Any]]) -> bool:
    """Check whether a field config marks the field as excluded."""
    if not field_config:
        return False
    return bool(field_config.get(EXCLUDE))


def is_partial_load_allowed(config: Dict[str, Any]) -> bool:
    """Partial loading is allowed unless ``disable_partial_load`` is truthy."""
    return not config.get(DISABLE_PARTIAL_LOAD)


def has_field_config(config: Dict[str, Any], field: str) -> bool:
    """
    Check if the specified field has some special configuration.

    Args:
        config: The config of an entity the field belongs to
        field: The name of the field

    Returns:
        True if the field is listed under ``fields``, even with a None value
    """
    fields = config.get(FIELDS)
    return bool(fields) and field in fields


def field_config(config: Dict[str, Any], field: str) -> Dict[str, Any]:
    """
    Get the configuration of the specified field.

    An empty dict means "all defaults".
    """
    fields = config.get(FIELDS) or {}
    return fields.get(field) or {}


def hints(config: Dict[str, Any]) -> List[Any]:
    """Query hints in declaration order."""
    return list(config.get(HINTS) or [])


def order_by(config: Dict[str, Any]) -> Dict[str, str]:
    """Ordering as ``{field: direction}``, preserving declaration order."""
    return dict(config.get(ORDER_BY) or {})


def post_serialize(config: Dict[str, Any]) -> Optional[Callable]:
    return config.get(POST_SERIALIZE)


def is_metadata_property(property_path: str) -> bool:
    """Check whether a property path is a metadata property like ``__class__``."""
    return property_path.startswith(METADATA_PREFIX)


def split_property_path(property_path: str) -> List[str]:
    """
    Split a property path to parts.

    Empty segments are kept: ``'a..b'`` gives ``['a', '', 'b']``.
    """
    return property_path.split(PATH_SEPARATOR)
