"""
Host job for the LDAP bridge.

Loads settings, connects to the directory, imports users (hydration plus
role assignment) and optionally exports local users back to the directory.
"""

import sys
import logging
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

import yaml

from ldap_bridge.config import ConfigStore, ConfigurationError, load_config
from ldap_bridge.entity_serializer import EntitySerializer
from ldap_bridge.ldap_client import DirectoryError, DirectoryUnavailable, LDAPClient
from ldap_bridge.logging_setup import setup_logging
from ldap_bridge.models import LocalUser
from ldap_bridge.retry import MaxRetriesExceeded, create_retry_callback, retry_call
from ldap_bridge.sync_service import DirectorySyncService, SyncReport

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_PARTIAL_FAILURE = 1
EXIT_CONFIGURATION_ERROR = 2
EXIT_DIRECTORY_UNAVAILABLE = 3
EXIT_UNEXPECTED_ERROR = 4

REPORT_ENTITY = 'User'


class SyncJob:
    """
    Runs one import/export cycle against the directory.

    Local users are kept in ``self.users`` keyed by DN, so a host embedding
    the job can pre-load existing accounts whose passwords must survive.
    """

    def __init__(self, config_path: Optional[str] = None, users: Optional[Dict[str, Any]] = None):
        self.config_path = config_path
        self.config = None
        self.ldap_client = None
        self.service = None
        self.users = users if users is not None else {}
        self.report: Optional[SyncReport] = None
        self.export_failures: List[str] = []

    def run(self, export_path: Optional[str] = None, output_path: Optional[str] = None) -> int:
        """
        Run the import, then the optional export.

        Returns:
            Exit code (0 for success, non-zero for failure)
        """
        try:
            self._load_configuration()
            setup_logging(self.config.get('logging', {}))
            logger.info("Starting LDAP bridge sync")

            self._connect_ldap()
            self.service = DirectorySyncService(self.ldap_client)
            self.service.reconfigure(ConfigStore(self.config))

            self._import_users()
            if export_path:
                self._export_users(export_path)
            if output_path:
                self._write_report(output_path)

            failures = len(self.report.failed) + len(self.export_failures)
            if failures:
                logger.warning(f"Sync completed with {failures} failures")
                return EXIT_PARTIAL_FAILURE
            logger.info("Sync completed successfully")
            return EXIT_OK

        except ConfigurationError as e:
            logger.error(f"Configuration error: {e}")
            return EXIT_CONFIGURATION_ERROR
        except (DirectoryUnavailable, MaxRetriesExceeded) as e:
            logger.error(f"LDAP directory unavailable: {e}")
            return EXIT_DIRECTORY_UNAVAILABLE
        except Exception as e:
            logger.error(f"Unexpected error: {e}", exc_info=True)
            return EXIT_UNEXPECTED_ERROR
        finally:
            self._cleanup()

    def _load_configuration(self):
        self.config = load_config(self.config_path)

    def _error_config(self) -> Dict[str, Any]:
        return self.config.get('error_handling', {})

    def _connect_ldap(self):
        error_config = self._error_config()
        self.ldap_client = LDAPClient(self.config['ldap'])
        try:
            self.ldap_client.connect(
                max_retries=error_config.get('max_retries', 3),
                retry_wait=error_config.get('retry_wait_seconds', 5)
            )
        except DirectoryUnavailable:
            self.ldap_client = None
            raise

    def _user_for_entry(self, entry: Mapping[str, Any]) -> Any:
        dn = entry.get('dn')
        user = self.users.get(dn)
        if user is None:
            user = LocalUser()
            self.users[dn] = user
        return user

    def _import_users(self):
        error_config = self._error_config()
        entries = retry_call(
            self.service.find_users,
            max_attempts=error_config.get('max_retries', 3) + 1,
            delay=error_config.get('retry_wait_seconds', 5),
            on_retry=create_retry_callback("LDAP user search")
        )
        logger.info(f"Found {len(entries)} directory users")
        self.report = self.service.sync_users(entries, self._user_for_entry)
        for result in self.report.failed:
            logger.error(f"User {result.dn} failed in state {result.state.value}: {result.error}")

    def _export_users(self, export_path: str):
        """Export users listed in a YAML file (a list of field mappings)."""
        try:
            with open(export_path, 'r') as f:
                records = yaml.safe_load(f) or []
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Cannot read export file {export_path}: {e}")

        if not isinstance(records, list):
            raise ConfigurationError(f"Export file must contain a list of users: {export_path}")

        for index, record in enumerate(records):
            if not isinstance(record, dict) or not all(isinstance(key, str) for key in record):
                raise ConfigurationError(f"Export record {index} in {export_path} must be a mapping of field names")
            # roles are assigned from directory groups, never from the export file
            user = LocalUser(**{key: value for key, value in record.items() if key != 'roles'})
            try:
                dn = self.service.export_user(user)
                logger.info(f"Exported {user.username} to {dn}")
            except DirectoryError as e:
                logger.error(f"Failed to export {user.username}: {e}")
                self.export_failures.append(user.username)

    def _write_report(self, output_path: str):
        report = {
            'generated_at': datetime.now().isoformat(),
            'runtime_seconds': round(self.report.runtime_seconds, 2),
            'synced': EntitySerializer().serialize_all(
                [result.user for result in self.report.succeeded],
                ConfigStore(self.config).entity_config(REPORT_ENTITY)
            ),
            'failed': [
                {'dn': result.dn, 'state': result.state.value, 'error': str(result.error)}
                for result in self.report.failed
            ],
            'export_failures': self.export_failures,
        }
        with open(output_path, 'w') as f:
            yaml.safe_dump(report, f, default_flow_style=False, sort_keys=False)
        logger.info(f"Sync report written to {output_path}")

    def health_check(self) -> Dict[str, Any]:
        """
        Check configuration, LDAP connectivity and the user mapping.

        Returns:
            Dictionary containing health status and details
        """
        health_status = {
            'status': 'healthy',
            'timestamp': datetime.now().isoformat(),
            'checks': {}
        }

        try:
            self._load_configuration()
            health_status['checks']['configuration'] = {
                'status': 'pass',
                'message': 'Configuration loaded successfully'
            }
        except ConfigurationError as e:
            health_status['checks']['configuration'] = {'status': 'fail', 'message': f'Configuration error: {e}'}
            health_status['status'] = 'unhealthy'
            return health_status

        mapping = DirectorySyncService(None).reconfigure(ConfigStore(self.config))
        if mapping.enabled:
            health_status['checks']['user_mapping'] = {
                'status': 'pass',
                'message': f'Username attribute: {mapping.username_attribute}'
            }
        else:
            health_status['checks']['user_mapping'] = {
                'status': 'fail',
                'message': 'No username attribute mapped; sync is disabled'
            }
            health_status['status'] = 'unhealthy'

        test_client = LDAPClient(self.config['ldap'])
        try:
            test_client.connect(max_retries=1, retry_wait=0)
            if not test_client.test_connection():
                raise DirectoryUnavailable("root DSE search failed")
            health_status['checks']['ldap'] = {'status': 'pass', 'message': 'LDAP connection successful'}
        except DirectoryUnavailable as e:
            health_status['checks']['ldap'] = {'status': 'fail', 'message': f'LDAP connection failed: {e}'}
            health_status['status'] = 'unhealthy'
        finally:
            test_client.disconnect()

        return health_status

    def _cleanup(self):
        if self.ldap_client:
            self.ldap_client.disconnect()


def main():
    """Main entry point for the application."""
    import argparse
    import json

    parser = argparse.ArgumentParser(description='LDAP user import and export')
    parser.add_argument('--config', '-c', help='Path to configuration file')
    parser.add_argument('--health-check', action='store_true',
                        help='Perform health check instead of sync')
    parser.add_argument('--export', metavar='FILE',
                        help='YAML list of local users to write to the directory')
    parser.add_argument('--output', '-o', metavar='FILE',
                        help='Write a YAML sync report to FILE')

    args = parser.parse_args()
    job = SyncJob(config_path=args.config)

    if args.health_check:
        health_status = job.health_check()
        print(json.dumps(health_status, indent=2))
        sys.exit(0 if health_status['status'] == 'healthy' else 1)

    sys.exit(job.run(export_path=args.export, output_path=args.output))


if __name__ == "__main__":
    main()
