"""
Serialization of local records following an entity config.

The entity config (see serializer_config) decides which fields are written,
where their values come from and in which order a collection is returned.
"""

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

from ldap_bridge.config import ConfigurationError
from ldap_bridge import serializer_config as cfg

logger = logging.getLogger(__name__)


def _sort_key(value: Any):
    return (value is None, str(value))


class EntitySerializer:
    """Turns local records into plain dictionaries."""

    def serialize(self, record: Any, config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Serialize one record.

        With the ``all`` exclusion policy only the fields listed in the config
        are written; otherwise every field of the record is written plus any
        configured field the record does not have. Fields marked ``exclude``
        are always left out.

        Args:
            record: A record with ``to_dict()``, a mapping, or a plain object
            config: Entity config, empty for defaults

        Returns:
            The serialized record, passed through ``post_serialize`` if set

        Raises:
            ConfigurationError: If a field refers to an unknown metadata property
        """
        config = config or {}
        base = self._base_fields(record)
        configured = list(cfg.get_array_value(config, cfg.FIELDS))

        if cfg.is_exclude_all(config):
            names = configured
        else:
            names = list(base) + [name for name in configured if name not in base]

        data = {}
        for name in names:
            field_config = cfg.field_config(config, name)
            if cfg.is_field_excluded(field_config):
                continue
            data[name] = self._resolve(record, base, field_config.get(cfg.PROPERTY_PATH) or name)

        post = cfg.post_serialize(config)
        if post is not None:
            data = post(data)
        return data

    def serialize_all(self, records: Iterable[Any], config: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Serialize records and sort them by the config's ``order_by``."""
        config = config or {}
        items = [self.serialize(record, config) for record in records]

        # stable sorts, least significant key first
        for name, direction in reversed(list(cfg.order_by(config).items())):
            items.sort(key=lambda item: _sort_key(item.get(name)), reverse=str(direction).upper() == 'DESC')
        return items

    @staticmethod
    def _base_fields(record: Any) -> Dict[str, Any]:
        to_dict = getattr(record, 'to_dict', None)
        if callable(to_dict):
            return dict(to_dict())
        if isinstance(record, Mapping):
            return dict(record)
        return {name: value for name, value in vars(record).items() if not name.startswith('_')}

    @staticmethod
    def _resolve(record: Any, base: Mapping[str, Any], property_path: str) -> Any:
        if cfg.is_metadata_property(property_path):
            if property_path == cfg.CLASS_NAME:
                return type(record).__name__
            if property_path == cfg.DISCRIMINATOR:
                return getattr(type(record), 'discriminator', None) or type(record).__name__.lower()
            raise ConfigurationError(f"Unknown metadata property: {property_path}")

        parts = cfg.split_property_path(property_path)
        value = base.get(parts[0])
        for part in parts[1:]:
            if value is None:
                break
            value = value.get(part) if isinstance(value, Mapping) else getattr(value, part, None)
        return value
