#!/usr/bin/env python3
"""
Tests for logging setup, credential masking and the audit logger.
"""

import os
import sys
import shutil
import logging
import tempfile
import unittest

# Add the project directory to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ldap_bridge.logging_setup import (
    LoggingManager, SecurityAuditLogger, SensitiveDataFilter
)


def filtered(message, *args):
    record = logging.LogRecord('test', logging.INFO, __file__, 1, message, args, None)
    SensitiveDataFilter().filter(record)
    return record.getMessage()


class TestSensitiveDataFilter(unittest.TestCase):

    def test_assignments_are_masked(self):
        self.assertEqual(filtered('password=secret123'), 'password=****')
        self.assertEqual(filtered('bind_password=topsecret, user=jdoe'), 'bind_password=****, user=jdoe')
        self.assertEqual(filtered('token: abc123'), 'token: ****')

    def test_directory_password_attribute(self):
        self.assertEqual(filtered('userPassword={SSHA}abcdef'), 'userPassword=****')

    def test_quoted_values_are_masked(self):
        self.assertEqual(filtered('{"bind_password": "topsecret"}'), '{"bind_password": "****"}')
        self.assertEqual(filtered("{'password': 'test123'}"), "{'password': '****'}")

    def test_arguments_are_masked(self):
        self.assertEqual(filtered('entry %s', {'password': 'hunter2'}), "entry {'password': '****'}")

    def test_plain_messages_untouched(self):
        self.assertEqual(filtered('Synced 3 users'), 'Synced 3 users')


class TestLoggingManager(unittest.TestCase):

    def setUp(self):
        self.log_dir = tempfile.mkdtemp(prefix='ldap_bridge_logs_')
        self.manager = LoggingManager()

    def tearDown(self):
        self.manager.reset()
        shutil.rmtree(self.log_dir, ignore_errors=True)

    def test_setup_creates_log_file(self):
        self.manager.setup_logging({'level': 'DEBUG', 'log_dir': self.log_dir, 'console_output': False})
        logging.getLogger('ldap_bridge.test').info("hello password=secret")
        for handler in logging.getLogger().handlers:
            handler.flush()

        log_file = os.path.join(self.log_dir, LoggingManager.LOG_FILE)
        self.assertTrue(os.path.exists(log_file))
        with open(log_file) as f:
            content = f.read()
        self.assertIn('hello password=****', content)
        self.assertNotIn('secret', content)

    def test_setup_is_idempotent(self):
        config = {'log_dir': self.log_dir, 'console_output': True}
        self.manager.setup_logging(config)
        handler_count = len(logging.getLogger().handlers)
        self.manager.setup_logging(config)
        self.assertEqual(len(logging.getLogger().handlers), handler_count)
        self.assertEqual(handler_count, 2)

    def test_no_rotation(self):
        self.manager.setup_logging({'log_dir': self.log_dir, 'rotation': 'none', 'console_output': False})
        handler = logging.getLogger().handlers[0]
        self.assertIs(type(handler), logging.FileHandler)

    def test_old_rotated_logs_removed(self):
        old_file = os.path.join(self.log_dir, LoggingManager.LOG_FILE + '.2000-01-01')
        with open(old_file, 'w') as f:
            f.write('old')
        os.utime(old_file, (0, 0))

        self.manager.setup_logging({'log_dir': self.log_dir, 'retention_days': 7, 'console_output': False})
        self.assertFalse(os.path.exists(old_file))


class TestSecurityAuditLogger(unittest.TestCase):

    def test_sync_and_export_records(self):
        audit = SecurityAuditLogger()
        with self.assertLogs('security', level='INFO') as captured:
            audit.log_user_sync('jdoe', 'uid=jdoe,dc=example', True, ['ROLE_B', 'ROLE_A'])
            audit.log_user_export('jdoe', 'uid=jdoe,dc=example', False)
            audit.log_configuration_change('mapping rebuilt')

        self.assertIn("User sync SUCCESS: user=jdoe dn=uid=jdoe,dc=example roles=['ROLE_A', 'ROLE_B']",
                      captured.output[0])
        self.assertIn('User export FAILURE', captured.output[1])
        self.assertIn('Configuration change: mapping rebuilt', captured.output[2])


if __name__ == '__main__':
    unittest.main()
