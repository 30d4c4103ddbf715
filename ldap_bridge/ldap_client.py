"""
LDAP client for searching and writing directory entries.

The client hands entries to the rest of the package in the directory
protocol's counted form: single-valued attributes as bare scalars,
multi-valued attributes as ``{'count': n, 1: v1, ..., n: vn}``, and the
entry's distinguished name under ``dn``.
"""

import logging
import ssl
import time
from typing import Dict, List, Any, Optional
from ldap3 import Server, Connection, SUBTREE, BASE, ALL, ALL_ATTRIBUTES, MODIFY_REPLACE, Tls
from ldap3.core.exceptions import LDAPException, LDAPSocketOpenError, LDAPBindError, LDAPNoSuchObjectResult

logger = logging.getLogger(__name__)

PAGED_RESULTS_CONTROL = '1.2.840.113556.1.4.319'
NO_SUCH_OBJECT = 32


class DirectoryError(Exception):
    """Base exception for directory errors."""
    pass


class DirectoryUnavailable(DirectoryError):
    """Raised when the directory cannot be reached or an operation fails."""
    pass


class MalformedEntry(DirectoryError):
    """Raised when an entry lacks an attribute that is required."""
    pass


def to_directory_value(values: List[Any]) -> Any:
    """
    Encode an attribute value list the way the directory protocol returns it.

    Values of a multi-valued attribute are numbered from 1; position 0 is
    left to the count marker.
    """
    if len(values) == 1:
        return values[0]
    encoded = {'count': len(values)}
    for index, value in enumerate(values, start=1):
        encoded[index] = value
    return encoded


class LDAPClient:
    """
    LDAP client implementing search, write and exists over ldap3.

    Use as a context manager, or call connect() and disconnect() explicitly.
    """

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize LDAP client with configuration.

        Args:
            config: LDAP configuration dictionary
        """
        self.config = config
        self.server_url = config['server_url']
        self.bind_dn = config['bind_dn']
        self.bind_password = config['bind_password']

        # SSL/TLS configuration
        self.use_ssl = config.get('use_ssl', self.server_url.lower().startswith('ldaps://'))
        self.start_tls = config.get('start_tls', False)
        self.verify_ssl = config.get('verify_ssl', True)
        self.ca_cert_file = config.get('ca_cert_file')

        # Connection settings
        self.connection_timeout = config.get('connection_timeout', 10)
        self.receive_timeout = config.get('receive_timeout', 10)
        self.page_size = config.get('page_size', 1000)

        error_config = config.get('error_handling', {})
        self.max_retries = error_config.get('max_retries', 3)
        self.retry_wait = error_config.get('retry_wait_seconds', 5)

        self.server = None
        self.connection = None
        self._connected = False

    def connect(self, max_retries: Optional[int] = None, retry_wait: Optional[int] = None) -> bool:
        """
        Establish connection to LDAP server with retry logic.

        Args:
            max_retries: Maximum number of connection attempts (uses config default if None)
            retry_wait: Seconds to wait between retries (uses config default if None)

        Returns:
            True if connection successful

        Raises:
            DirectoryUnavailable: If connection fails after all retries
        """
        max_retries = max_retries or self.max_retries
        retry_wait = retry_wait if retry_wait is not None else self.retry_wait

        try:
            self.server = Server(
                self.server_url,
                use_ssl=self.use_ssl,
                tls=self._create_tls_config(),
                get_info=ALL,
                connect_timeout=self.connection_timeout
            )
            logger.debug(f"Created LDAP server object for {self.server_url} (SSL: {self.use_ssl}, StartTLS: {self.start_tls})")
        except LDAPException as e:
            raise DirectoryUnavailable(f"Failed to create LDAP server: {e}")

        last_exception = None
        for attempt in range(max_retries):
            try:
                self.connection = Connection(
                    self.server,
                    user=self.bind_dn,
                    password=self.bind_password,
                    auto_bind=False,
                    receive_timeout=self.receive_timeout
                )

                if not self.connection.open():
                    raise LDAPSocketOpenError(f"Failed to open connection: {self.connection.result}")

                if self.start_tls and not self.use_ssl:
                    if not self.connection.start_tls():
                        raise LDAPBindError(f"Failed to start TLS: {self.connection.result}")
                    logger.debug("StartTLS negotiation successful")

                if not self.connection.bind():
                    raise LDAPBindError(f"Bind failed: {self.connection.result}")

                self._connected = True
                logger.info(f"Successfully connected and bound to LDAP server {self.server_url}")
                return True

            except LDAPException as e:
                last_exception = e
                logger.warning(f"LDAP connection attempt {attempt + 1}/{max_retries} failed: {e}")
                self._drop_connection()
                if attempt < max_retries - 1:
                    time.sleep(retry_wait)

        error_msg = f"Failed to connect to LDAP after {max_retries} attempts"
        if last_exception:
            error_msg += f": {last_exception}"
        raise DirectoryUnavailable(error_msg)

    def _drop_connection(self):
        if self.connection:
            try:
                self.connection.unbind()
            except LDAPException as e:
                logger.debug(f"Ignoring unbind failure on broken connection: {e}")
            self.connection = None

    def _create_tls_config(self) -> Optional[Tls]:
        """
        Create TLS configuration for LDAP connection.

        Returns:
            Tls configuration object or None if not needed
        """
        if not (self.use_ssl or self.start_tls):
            return None

        tls_config = {}
        if not self.verify_ssl:
            tls_config['validate'] = ssl.CERT_NONE
            logger.warning("SSL certificate verification disabled")
        else:
            tls_config['validate'] = ssl.CERT_REQUIRED

        if self.ca_cert_file:
            tls_config['ca_certs_file'] = self.ca_cert_file
            logger.debug(f"Using CA certificate file: {self.ca_cert_file}")

        try:
            return Tls(**tls_config)
        except LDAPException as e:
            raise DirectoryUnavailable(f"Failed to create TLS configuration: {e}")

    def disconnect(self):
        """Close LDAP connection."""
        if self.connection and self._connected:
            try:
                self.connection.unbind()
                logger.debug("LDAP connection closed")
            except LDAPException as e:
                logger.warning(f"Error closing LDAP connection: {e}")
            finally:
                self._connected = False
                self.connection = None

    def _require_connection(self):
        if not self._connected:
            raise DirectoryUnavailable("Not connected to LDAP server")

    def search(self, base_dn: str, search_filter: str) -> List[Dict[str, Any]]:
        """
        Search a subtree and return every matching entry.

        Args:
            base_dn: Search base
            search_filter: LDAP filter string

        Returns:
            List of entries, empty when nothing matches

        Raises:
            DirectoryUnavailable: If the search fails
        """
        self._require_connection()
        logger.debug(f"Searching with filter: {search_filter} in base: {base_dn}")

        entries = []
        cookie = None
        page_count = 0
        try:
            while True:
                success = self.connection.search(
                    search_base=base_dn,
                    search_filter=search_filter,
                    search_scope=SUBTREE,
                    attributes=ALL_ATTRIBUTES,
                    paged_size=self.page_size,
                    paged_cookie=cookie
                )
                result_code = self.connection.result.get('result', 0)
                if not success and result_code == NO_SUCH_OBJECT:
                    logger.info(f"Search base does not exist: {base_dn}")
                    return []
                if not success and result_code != 0:
                    raise DirectoryUnavailable(f"Search failed: {self.connection.result}")

                page_count += 1
                page_entries = self._process_search_results()
                entries.extend(page_entries)
                logger.debug(f"Page {page_count}: Retrieved {len(page_entries)} entries")

                cookie = self._paged_cookie()
                if not cookie or not page_entries:
                    break
        except LDAPNoSuchObjectResult:
            logger.info(f"Search base does not exist: {base_dn}")
            return []
        except LDAPException as e:
            raise DirectoryUnavailable(f"LDAP search failed: {e}")

        logger.info(f"Retrieved {len(entries)} entries across {page_count} pages")
        return entries

    def _paged_cookie(self) -> Optional[bytes]:
        controls = self.connection.result.get('controls') or {}
        control = controls.get(PAGED_RESULTS_CONTROL)
        if not control:
            return None
        return control.get('value', {}).get('cookie')

    def _process_search_results(self) -> List[Dict[str, Any]]:
        """Convert raw ldap3 responses into counted directory entries."""
        entries = []
        for response in self.connection.response or []:
            if response.get('type') != 'searchResEntry':
                continue
            entry = {'dn': response['dn']}
            for name, values in response.get('attributes', {}).items():
                if not isinstance(values, list):
                    values = [values]
                if values:
                    entry[name] = to_directory_value(values)
            entries.append(entry)
        return entries

    def exists(self, dn: str) -> bool:
        """Check whether an entry with the given DN exists."""
        self._require_connection()
        try:
            success = self.connection.search(
                search_base=dn,
                search_filter='(objectClass=*)',
                search_scope=BASE,
                attributes=['objectClass'],
                size_limit=1
            )
        except LDAPNoSuchObjectResult:
            return False
        except LDAPException as e:
            raise DirectoryUnavailable(f"Failed to look up {dn}: {e}")
        return bool(success and self.connection.entries)

    def write(self, dn: str, entry: Dict[str, Any]) -> bool:
        """
        Create the entry, or replace its attributes if it already exists.

        Attributes with None values are left out of a new entry and cleared
        on an existing one.

        Raises:
            DirectoryUnavailable: If the directory rejects the write
        """
        self._require_connection()
        attributes = {name: value for name, value in entry.items() if name not in ('dn', 'objectClass')}

        try:
            if self.exists(dn):
                changes = {
                    name: [(MODIFY_REPLACE, [] if value is None else self._as_list(value))]
                    for name, value in attributes.items()
                }
                success = self.connection.modify(dn, changes)
                operation = 'modify'
            else:
                object_class = entry.get('objectClass') or []
                success = self.connection.add(
                    dn,
                    object_class=object_class,
                    attributes={name: value for name, value in attributes.items() if value is not None}
                )
                operation = 'add'
        except LDAPException as e:
            raise DirectoryUnavailable(f"Failed to write {dn}: {e}")

        if not success:
            raise DirectoryUnavailable(f"Directory rejected {operation} of {dn}: {self.connection.result}")

        logger.info(f"Wrote directory entry {dn} ({operation})")
        return True

    @staticmethod
    def _as_list(value: Any) -> List[Any]:
        if isinstance(value, (list, tuple, set)):
            return list(value)
        return [value]

    def test_connection(self) -> bool:
        """
        Test LDAP connection without throwing exceptions.

        Returns:
            True if connection successful, False otherwise
        """
        try:
            if not self._connected:
                self.connect()

            return bool(self.connection.search(
                search_base='',
                search_filter='(objectClass=*)',
                search_scope=BASE,
                attributes=['namingContexts'],
                size_limit=1
            ))
        except (DirectoryError, LDAPException) as e:
            logger.debug(f"Connection test failed: {e}")
            return False

    def __enter__(self):
        """Context manager entry."""
        if not self._connected:
            self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.disconnect()
