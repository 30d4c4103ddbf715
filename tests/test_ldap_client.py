#!/usr/bin/env python3
"""
Unit tests for the LDAP client.

ldap3's Server and Connection are patched; no directory server is needed.
"""

import os
import sys
import unittest
from unittest.mock import Mock, patch

# Add the project directory to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ldap3 import MODIFY_REPLACE
from ldap3.core.exceptions import LDAPSocketOpenError

from ldap_bridge.attribute_mapper import DirectoryAttributeMapper
from ldap_bridge.ldap_client import (
    LDAPClient, DirectoryUnavailable, PAGED_RESULTS_CONTROL, to_directory_value
)
from ldap_bridge.models import LocalUser
from ldap_bridge.role_resolver import DirectoryRoleResolver


BASIC_CONFIG = {
    'server_url': 'ldaps://ldap.example.com:636',
    'bind_dn': 'cn=service,dc=example,dc=com',
    'bind_password': 'password123',
}


class TestInitialization(unittest.TestCase):

    def test_basic_initialization(self):
        client = LDAPClient(BASIC_CONFIG)
        self.assertEqual(client.server_url, 'ldaps://ldap.example.com:636')
        self.assertTrue(client.use_ssl)
        self.assertFalse(client.start_tls)
        self.assertTrue(client.verify_ssl)
        self.assertEqual(client.page_size, 1000)

    def test_advanced_initialization(self):
        client = LDAPClient(dict(
            BASIC_CONFIG,
            server_url='ldap://ldap.example.com:389',
            start_tls=True,
            verify_ssl=False,
            page_size=500,
            error_handling={'max_retries': 5, 'retry_wait_seconds': 10},
        ))
        self.assertFalse(client.use_ssl)
        self.assertTrue(client.start_tls)
        self.assertEqual(client.page_size, 500)
        self.assertEqual(client.max_retries, 5)
        self.assertEqual(client.retry_wait, 10)

    def test_no_tls_config_for_plain_ldap(self):
        client = LDAPClient(dict(BASIC_CONFIG, server_url='ldap://ldap.example.com'))
        self.assertIsNone(client._create_tls_config())

    def test_tls_config_for_ldaps(self):
        client = LDAPClient(dict(BASIC_CONFIG, verify_ssl=False))
        self.assertIsNotNone(client._create_tls_config())


class TestEncoding(unittest.TestCase):

    def test_single_value_is_scalar(self):
        self.assertEqual(to_directory_value(['jdoe']), 'jdoe')

    def test_multiple_values_are_counted(self):
        self.assertEqual(to_directory_value(['a', 'b']), {'count': 2, 1: 'a', 2: 'b'})


class ConnectedClientTestCase(unittest.TestCase):
    """Base class providing a client bound to a mocked connection."""

    def setUp(self):
        server_patcher = patch('ldap_bridge.ldap_client.Server')
        connection_patcher = patch('ldap_bridge.ldap_client.Connection')
        self.mock_server = server_patcher.start()
        self.mock_connection_class = connection_patcher.start()
        self.addCleanup(server_patcher.stop)
        self.addCleanup(connection_patcher.stop)

        self.connection = Mock()
        self.connection.open.return_value = True
        self.connection.bind.return_value = True
        self.connection.result = {'result': 0}
        self.connection.response = []
        self.connection.entries = []
        self.mock_connection_class.return_value = self.connection

        self.client = LDAPClient(BASIC_CONFIG)
        self.client.connect()


class TestConnect(ConnectedClientTestCase):

    def test_connect_binds(self):
        self.assertTrue(self.client._connected)
        self.connection.open.assert_called()
        self.connection.bind.assert_called()

    @patch('ldap_bridge.ldap_client.time.sleep')
    def test_connect_retries_then_fails(self, mock_sleep):
        self.connection.open.side_effect = LDAPSocketOpenError("unreachable")
        client = LDAPClient(BASIC_CONFIG)

        with self.assertRaises(DirectoryUnavailable) as context:
            client.connect(max_retries=2, retry_wait=1)

        self.assertIn("after 2 attempts", str(context.exception))
        self.assertEqual(mock_sleep.call_count, 1)

    def test_disconnect(self):
        self.client.disconnect()
        self.connection.unbind.assert_called_once()
        self.assertFalse(self.client._connected)

    def test_operations_require_connection(self):
        client = LDAPClient(BASIC_CONFIG)
        with self.assertRaises(DirectoryUnavailable):
            client.search('dc=example', '(uid=*)')


class TestSearch(ConnectedClientTestCase):

    def test_search_converts_entries(self):
        self.connection.search.return_value = True
        self.connection.response = [
            {
                'type': 'searchResEntry',
                'dn': 'uid=jdoe,ou=people,dc=example',
                'attributes': {'uid': ['jdoe'], 'mail': ['j@example.com', 'john@example.com'], 'empty': []},
            },
            {'type': 'searchResRef', 'uri': ['ldap://other']},
        ]

        entries = self.client.search('dc=example', '(uid=jdoe)')

        self.assertEqual(entries, [{
            'dn': 'uid=jdoe,ou=people,dc=example',
            'uid': 'jdoe',
            'mail': {'count': 2, 1: 'j@example.com', 2: 'john@example.com'},
        }])

    def test_search_without_matches(self):
        self.connection.search.return_value = False
        self.assertEqual(self.client.search('dc=example', '(uid=nobody)'), [])

    def test_search_missing_base(self):
        self.connection.search.return_value = False
        self.connection.result = {'result': 32, 'description': 'noSuchObject'}
        self.assertEqual(self.client.search('ou=gone,dc=example', '(uid=*)'), [])

    def test_search_failure(self):
        self.connection.search.return_value = False
        self.connection.result = {'result': 50, 'description': 'insufficientAccessRights'}
        with self.assertRaises(DirectoryUnavailable):
            self.client.search('dc=example', '(uid=*)')

    def test_search_follows_paged_cookie(self):
        pages = [
            ([{'type': 'searchResEntry', 'dn': 'uid=a', 'attributes': {'uid': ['a']}}], b'next'),
            ([{'type': 'searchResEntry', 'dn': 'uid=b', 'attributes': {'uid': ['b']}}], b''),
        ]

        def search(**kwargs):
            response, cookie = pages.pop(0)
            self.connection.response = response
            self.connection.result = {
                'result': 0,
                'controls': {PAGED_RESULTS_CONTROL: {'value': {'size': 0, 'cookie': cookie}}},
            }
            return True

        self.connection.search.side_effect = search

        entries = self.client.search('dc=example', '(uid=*)')

        self.assertEqual([entry['uid'] for entry in entries], ['a', 'b'])
        self.assertEqual(self.connection.search.call_args_list[1][1]['paged_cookie'], b'next')


class TestWrite(ConnectedClientTestCase):

    def test_exists(self):
        self.connection.search.return_value = True
        self.connection.entries = [Mock()]
        self.assertTrue(self.client.exists('uid=jdoe,dc=example'))

        self.connection.search.return_value = False
        self.connection.entries = []
        self.assertFalse(self.client.exists('uid=ghost,dc=example'))

    def test_write_adds_new_entry(self):
        self.connection.search.return_value = False
        self.connection.add.return_value = True

        self.client.write('uid=jdoe,ou=people,dc=example', {
            'objectClass': ['inetOrgPerson'], 'uid': 'jdoe', 'givenName': None
        })

        self.connection.add.assert_called_once_with(
            'uid=jdoe,ou=people,dc=example',
            object_class=['inetOrgPerson'],
            attributes={'uid': 'jdoe'}
        )

    def test_write_replaces_existing_entry(self):
        self.connection.search.return_value = True
        self.connection.entries = [Mock()]
        self.connection.modify.return_value = True

        self.client.write('uid=jdoe,dc=example', {'objectClass': ['person'], 'uid': 'jdoe', 'givenName': None})

        self.connection.modify.assert_called_once_with('uid=jdoe,dc=example', {
            'uid': [(MODIFY_REPLACE, ['jdoe'])],
            'givenName': [(MODIFY_REPLACE, [])],
        })

    def test_rejected_write(self):
        self.connection.search.return_value = False
        self.connection.add.return_value = False
        with self.assertRaises(DirectoryUnavailable):
            self.client.write('uid=jdoe,dc=example', {'objectClass': ['person'], 'uid': 'jdoe'})

    def test_test_connection_searches_root_dse(self):
        self.connection.search.return_value = True
        self.assertTrue(self.client.test_connection())
        self.assertEqual(self.connection.search.call_args[1]['search_base'], '')

    def test_test_connection_reports_failure(self):
        self.connection.search.return_value = False
        self.assertFalse(self.client.test_connection())


class TestSearchResultsDecoding(ConnectedClientTestCase):
    """Entries produced by the client decode without losing values."""

    def setUp(self):
        super().setUp()
        self.connection.search.return_value = True

    def _search(self, attributes):
        self.connection.response = [{
            'type': 'searchResEntry', 'dn': 'cn=Admins,ou=groups,dc=example', 'attributes': attributes,
        }]
        return self.client.search('dc=example', '(cn=*)')[0]

    def test_multi_valued_role_names_are_all_kept(self):
        entry = self._search({'cn': ['Admins', 'Administrators']})
        self.assertEqual(
            DirectoryRoleResolver.resolve_directory_role_values(entry, 'cn'), ['Admins', 'Administrators']
        )

    def test_single_valued_role_name(self):
        entry = self._search({'cn': ['Admins']})
        self.assertEqual(DirectoryRoleResolver.resolve_directory_role_values(entry, 'cn'), ['Admins'])

    def test_hydrate_from_client_entry(self):
        entry = self._search({'uid': ['jdoe'], 'mail': ['j@example.com', 'john@example.com']})
        mapper = DirectoryAttributeMapper()
        user = mapper.hydrate(LocalUser(), entry, mapper.build_mapping({'username': 'uid', 'email': 'mail'}))

        self.assertEqual(user.username, 'jdoe')
        self.assertEqual(user.email, ['j@example.com', 'john@example.com'])


if __name__ == '__main__':
    unittest.main()
