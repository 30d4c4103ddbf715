"""
Directory synchronisation service.

The service holds a DirectorySearchClient and the mapping components, and
drives each user through the sync states:

    IDLE -> SEARCHING -> HYDRATING -> ROLE_RESOLVING -> DONE

with FAILED reachable from any state. Sync settings live in an immutable
MappingConfig snapshot; reconfigure() builds a new snapshot and swaps the
reference, so a sync in flight keeps the snapshot it started with.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional

from ldap3.utils.conv import escape_filter_chars

from ldap_bridge.attribute_mapper import AttributeMapping, DirectoryAttributeMapper
from ldap_bridge.config import ConfigurationError
from ldap_bridge.ldap_client import DirectoryError
from ldap_bridge.logging_setup import security_logger
from ldap_bridge.models import FieldAccessor, LocalUser, RoleReferenceLookup, accessor_for
from ldap_bridge.role_resolver import DirectoryRoleResolver

logger = logging.getLogger(__name__)


class SyncState(str, Enum):
    IDLE = 'idle'
    SEARCHING = 'searching'
    HYDRATING = 'hydrating'
    ROLE_RESOLVING = 'role_resolving'
    DONE = 'done'
    FAILED = 'failed'


@dataclass(frozen=True)
class MappingConfig:
    """Snapshot of every setting a sync or export reads."""
    base_dn: str = ''
    user_filter: str = ''
    role_filter: str = ''
    role_id_attribute: str = ''
    role_user_id_attribute: str = ''
    export_dn: str = ''
    export_class: str = ''
    role_mapping: Mapping[str, frozenset] = field(default_factory=lambda: MappingProxyType({}))
    attributes: AttributeMapping = ()

    @property
    def enabled(self) -> bool:
        """Sync and export need a username attribute."""
        return bool(self.attributes)

    @property
    def username_attribute(self) -> Optional[str]:
        return self.attributes[0].directory_attribute if self.attributes else None

    @property
    def directory_attributes(self) -> List[str]:
        return [row.directory_attribute for row in self.attributes]

    def role_search_filter(self, user_dn: str) -> str:
        """``(&(<role filter>)(<role user id attribute>=<escaped user dn>))``"""
        role_filter = self.role_filter.strip()
        if role_filter.startswith('(') and role_filter.endswith(')'):
            role_filter = role_filter[1:-1]
        return f"(&({role_filter})({self.role_user_id_attribute}={escape_filter_chars(user_dn)}))"


@dataclass
class SyncResult:
    """Outcome of syncing one directory entry."""
    dn: Optional[str]
    user: Any = None
    state: SyncState = SyncState.IDLE
    error: Optional[Exception] = None
    roles: List[Any] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.state == SyncState.DONE

    def transition(self, state: SyncState):
        logger.debug(f"Sync of {self.dn}: {self.state.value} -> {state.value}")
        self.state = state


@dataclass
class SyncReport:
    """Results of a batch sync, one per directory entry."""
    results: List[SyncResult] = field(default_factory=list)
    start_time: datetime = field(default_factory=datetime.now)
    end_time: Optional[datetime] = None

    @property
    def succeeded(self) -> List[SyncResult]:
        return [result for result in self.results if result.succeeded]

    @property
    def failed(self) -> List[SyncResult]:
        return [result for result in self.results if not result.succeeded]

    @property
    def runtime_seconds(self) -> float:
        end = self.end_time or datetime.now()
        return (end - self.start_time).total_seconds()


class DirectorySyncService:
    """
    Synchronises local users with directory entries.

    Args:
        client: Object providing ``search(base_dn, filter)``, ``write(dn, entry)``
            and ``exists(dn)``
        mapping_config: Initial settings snapshot; sync is disabled until
            reconfigure() supplies a username mapping
        role_lookup: Produces role references from local role ids
        field_accessor: Field access for the local record type; picked from
            ``record_type`` when not given
        record_type: Type of the local user records
    """

    def __init__(self, client, mapping_config: Optional[MappingConfig] = None,
                 role_lookup: Optional[RoleReferenceLookup] = None,
                 field_accessor: Optional[FieldAccessor] = None, record_type: type = LocalUser):
        self.client = client
        self.mapper = DirectoryAttributeMapper(field_accessor or accessor_for(record_type))
        self.role_resolver = DirectoryRoleResolver(role_lookup)
        self._config = mapping_config or MappingConfig()
        self._config_lock = threading.Lock()

    @property
    def config(self) -> MappingConfig:
        return self._config

    @property
    def username_attribute(self) -> Optional[str]:
        return self._config.username_attribute

    def reconfigure(self, raw_config) -> MappingConfig:
        """
        Rebuild the settings snapshot from the latest persisted settings.

        Args:
            raw_config: A ConfigStore, or any mapping of setting name to value

        Returns:
            The newly published snapshot
        """
        get = raw_config.get
        attributes = self.mapper.build_mapping(get('user_mapping') or {})
        new_config = MappingConfig(
            base_dn=get('server_base_dn') or '',
            user_filter=get('user_filter') or '',
            role_filter=get('role_filter') or '',
            role_id_attribute=get('role_id_attribute') or '',
            role_user_id_attribute=get('role_user_id_attribute') or '',
            export_dn=get('export_user_base_dn') or '',
            export_class=get('export_user_class') or '',
            role_mapping=MappingProxyType(
                self.role_resolver.build_role_mapping_table(get('role_mapping') or [])
            ),
            attributes=attributes,
        )

        with self._config_lock:
            self._config = new_config

        security_logger.log_configuration_change(
            f"sync mapping rebuilt with {len(attributes)} attributes and {len(new_config.role_mapping)} role mappings"
        )
        return new_config

    def find_users(self, base_dn: Optional[str] = None, search_filter: Optional[str] = None) -> List[Dict[str, Any]]:
        """Search the directory for user entries; an empty list when none match."""
        config = self._config
        entries = self.client.search(base_dn or config.base_dn, search_filter or config.user_filter)
        return list(entries or [])

    def find_roles_for_user(self, user_dn: str, config: Optional[MappingConfig] = None) -> List[Dict[str, Any]]:
        config = config or self._config
        return list(self.client.search(config.base_dn, config.role_search_filter(user_dn)) or [])

    def sync_user(self, user: Any, entry: Mapping[str, Any], config: Optional[MappingConfig] = None) -> Any:
        """
        Hydrate a user from a directory entry and assign the mapped roles.

        Raises:
            ConfigurationError: If sync is disabled by the user mapping
            DirectoryError: If the entry is malformed or the role search fails
        """
        result = self._sync(user, entry, config or self._config)
        if result.error is not None:
            raise result.error
        return result.user

    def sync_users(self, entries: List[Mapping[str, Any]], user_factory: Callable[[Mapping[str, Any]], Any]) -> SyncReport:
        """
        Sync each entry onto the user returned by ``user_factory(entry)``.

        A failing entry is reported and skipped; the rest are still synced.
        """
        config = self._config
        report = SyncReport()

        if not config.enabled:
            logger.warning("Directory sync is disabled: no username attribute mapped")
            report.end_time = datetime.now()
            return report

        for entry in entries:
            try:
                user = user_factory(entry)
            except Exception as e:
                logger.error(f"Could not obtain local user for {entry.get('dn')}: {e}")
                report.results.append(SyncResult(dn=entry.get('dn'), state=SyncState.FAILED, error=e))
                continue
            report.results.append(self._sync(user, entry, config))

        report.end_time = datetime.now()
        logger.info(f"Synced {len(report.succeeded)} users, {len(report.failed)} failed "
                    f"in {report.runtime_seconds:.2f} seconds")
        return report

    def _sync(self, user: Any, entry: Mapping[str, Any], config: MappingConfig) -> SyncResult:
        result = SyncResult(dn=entry.get('dn'), user=user, state=SyncState.SEARCHING)

        if not config.enabled:
            result.transition(SyncState.FAILED)
            result.error = ConfigurationError("Directory sync is disabled: no username attribute mapped")
            return result

        try:
            result.transition(SyncState.HYDRATING)
            self.mapper.hydrate(user, entry, config.attributes)
            user_dn = self.mapper.field_accessor.get(user, 'dn')

            result.transition(SyncState.ROLE_RESOLVING)
            role_entries = self.find_roles_for_user(user_dn, config)
            directory_roles = []
            for role_entry in role_entries:
                directory_roles.extend(
                    self.role_resolver.resolve_directory_role_values(role_entry, config.role_id_attribute)
                )
            local_roles = self.role_resolver.map_to_local_roles(directory_roles, config.role_mapping)
            result.roles = sorted(local_roles, key=str)
            self.role_resolver.apply_roles(user, result.roles)

            result.transition(SyncState.DONE)
        except DirectoryError as e:
            logger.error(f"Failed to sync {result.dn} while {result.state.value}: {e}")
            result.transition(SyncState.FAILED)
            result.error = e
        except Exception as e:
            logger.error(f"Unexpected error syncing {result.dn} while {result.state.value}: {e}", exc_info=True)
            result.transition(SyncState.FAILED)
            result.error = e

        security_logger.log_user_sync(
            self.mapper.field_accessor.get(user, 'username'), result.dn, result.succeeded, result.roles
        )
        return result

    def export_user(self, user: Any) -> str:
        """
        Write a local user to the directory.

        Returns:
            The DN the user was written under

        Raises:
            ConfigurationError: If export is disabled by the user mapping
            DirectoryError: If the directory write fails
        """
        config = self._config
        if not config.enabled:
            raise ConfigurationError("Directory export is disabled: no username attribute mapped")

        dn = self.mapper.distinguished_name(user, config.username_attribute, config.export_dn)
        entry = self.mapper.to_directory_entry(user, config.attributes, config.export_class)
        username = self.mapper.field_accessor.get(user, 'username')
        try:
            self.client.write(dn, entry)
        except DirectoryError:
            security_logger.log_user_export(username, dn, False)
            raise

        security_logger.log_user_export(username, dn, True)
        return dn

    def user_exists(self, user: Any) -> bool:
        config = self._config
        if not config.enabled:
            raise ConfigurationError("Directory export is disabled: no username attribute mapped")
        return self.client.exists(self.mapper.distinguished_name(user, config.username_attribute, config.export_dn))
