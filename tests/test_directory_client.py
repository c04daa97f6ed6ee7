#!/usr/bin/env python3
"""
Unit tests for the directory client.

ldap3 Server and Connection are patched; the tests check connection handling,
the search requests sent and the write requests built.
"""

import os
import sys
import unittest
from unittest.mock import Mock, patch

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ldap3 import MODIFY_ADD, NO_ATTRIBUTES, SUBTREE
from ldap3.core.exceptions import LDAPSocketOpenError

from ou_group_sync.directory import (
    DirectoryClient,
    DirectoryConnectionError,
    DirectoryQueryError,
    DirectoryWriteError,
    GROUP_FILTER,
    OU_FILTER,
    USER_FILTER
)
from ou_group_sync.dn import DistinguishedNameError


def entry(dn, **attributes):
    return Mock(entry_dn=dn, entry_attributes_as_dict={k: list(v) for k, v in attributes.items()})


class DirectoryClientTestCase(unittest.TestCase):
    """Shared fixtures with patched ldap3 classes."""

    def setUp(self):
        self.config = {
            'server_url': 'ldap://dc01.example.com:389',
            'bind_dn': 'svc-sync@example.com',
            'bind_password': 'password123',
            'user_base_dn': 'OU=Employees,DC=example,DC=com',
            'group_base_dn': 'OU=MailGroups,DC=example,DC=com'
        }

        server_patcher = patch('ou_group_sync.directory.Server')
        connection_patcher = patch('ou_group_sync.directory.Connection')
        self.mock_server = server_patcher.start()
        self.mock_connection_class = connection_patcher.start()
        self.addCleanup(server_patcher.stop)
        self.addCleanup(connection_patcher.stop)

        self.connection = Mock()
        self.connection.open.return_value = True
        self.connection.bind.return_value = True
        self.connection.result = {'result': 0, 'description': 'success'}
        self.connection.entries = []
        self.mock_connection_class.return_value = self.connection

    def connected_client(self):
        client = DirectoryClient(self.config)
        client.connect()
        return client


class TestConnect(DirectoryClientTestCase):
    """Test cases for connecting and binding."""

    def test_connect_success(self):
        client = DirectoryClient(self.config)

        self.assertTrue(client.connect())
        self.assertTrue(client._connected)
        self.assertTrue(self.connection.open.called)
        self.assertTrue(self.connection.bind.called)
        kwargs = self.mock_connection_class.call_args.kwargs
        self.assertEqual(kwargs['user'], 'svc-sync@example.com')
        self.assertFalse(kwargs['auto_bind'])

    def test_plain_ldap_has_no_tls(self):
        client = DirectoryClient(self.config)

        self.assertFalse(client.use_ssl)
        self.assertIsNone(client._create_tls_config())

    def test_ldaps_detected(self):
        self.config['server_url'] = 'ldaps://dc01.example.com:636'
        client = DirectoryClient(self.config)

        self.assertTrue(client.use_ssl)
        self.assertIsNotNone(client._create_tls_config())

    def test_start_tls_negotiated(self):
        self.config['start_tls'] = True
        self.config['verify_ssl'] = False
        self.connection.start_tls.return_value = True

        self.connected_client()

        self.assertTrue(self.connection.start_tls.called)

    def test_bind_failure(self):
        self.connection.bind.return_value = False
        self.connection.result = {'result': 49, 'description': 'invalidCredentials'}
        client = DirectoryClient(self.config)

        with self.assertRaises(DirectoryConnectionError) as ctx:
            client.connect()

        self.assertIn('Bind failed', str(ctx.exception))
        self.assertFalse(client._connected)
        self.assertIsNone(client.connection)
        self.assertTrue(self.connection.unbind.called)

    def test_open_failure_is_not_retried(self):
        self.connection.open.side_effect = LDAPSocketOpenError('connection refused')
        client = DirectoryClient(self.config)

        with self.assertRaises(DirectoryConnectionError):
            client.connect()

        self.assertEqual(self.connection.open.call_count, 1)

    def test_context_manager_disconnects(self):
        with DirectoryClient(self.config) as client:
            client.connect()

        self.assertTrue(self.connection.unbind.called)
        self.assertFalse(client._connected)

    def test_connection_stats(self):
        client = DirectoryClient(self.config)
        stats = client.get_connection_stats()

        self.assertFalse(stats['connected'])
        self.assertEqual(stats['group_base_dn'], 'OU=MailGroups,DC=example,DC=com')
        self.assertNotIn('bind_password', stats)


class TestSearches(DirectoryClientTestCase):
    """Test cases for the three listings."""

    def test_search_organizational_units(self):
        self.connection.search.return_value = True
        self.connection.entries = [
            entry('OU=Sales,OU=Employees,DC=example,DC=com', name=['Sales'], description=['Sales Team']),
            entry('OU=Archive,OU=Employees,DC=example,DC=com', name=['Archive'], description=[]),
            entry('OU=Legacy,OU=Employees,DC=example,DC=com', name=['Legacy']),
        ]
        client = self.connected_client()

        ous = client.search_organizational_units()

        self.assertEqual([(o.name, o.description) for o in ous],
                         [('Sales', 'Sales Team'), ('Archive', ''), ('Legacy', '')])
        kwargs = self.connection.search.call_args.kwargs
        self.assertEqual(kwargs['search_base'], 'OU=Employees,DC=example,DC=com')
        self.assertEqual(kwargs['search_filter'], OU_FILTER)
        self.assertEqual(kwargs['search_scope'], SUBTREE)
        self.assertEqual(kwargs['attributes'], ['name', 'description'])

    def test_multi_valued_description_uses_first_value(self):
        self.connection.search.return_value = True
        self.connection.entries = [
            entry('OU=Sales,DC=example,DC=com', name=['Sales'], description=['Sales Team', 'Other'])
        ]
        client = self.connected_client()

        self.assertEqual(client.search_organizational_units()[0].description, 'Sales Team')

    def test_search_users_parses_dns(self):
        self.connection.search.return_value = True
        self.connection.entries = [entry('CN=Jane,OU=Sales,OU=Employees,DC=example,DC=com')]
        client = self.connected_client()

        users = client.search_users()

        self.assertEqual(users[0].dn_string, 'CN=Jane,OU=Sales,OU=Employees,DC=example,DC=com')
        self.assertEqual(users[0].dn.ou_names(), ['Sales', 'Employees'])
        kwargs = self.connection.search.call_args.kwargs
        self.assertEqual(kwargs['search_filter'], USER_FILTER)
        self.assertEqual(kwargs['attributes'], NO_ATTRIBUTES)

    def test_user_filter_selects_enabled_mail_users(self):
        self.assertIn('(objectClass=user)', USER_FILTER)
        self.assertIn('(!(userAccountControl:1.2.840.113556.1.4.803:=2))', USER_FILTER)
        self.assertIn('(mail=*)', USER_FILTER)

    def test_search_users_bad_dn(self):
        self.connection.search.return_value = True
        self.connection.entries = [entry('garbage')]
        client = self.connected_client()

        with self.assertRaises(DistinguishedNameError):
            client.search_users()

    def test_search_mail_groups(self):
        self.connection.search.return_value = True
        self.connection.entries = [
            entry('CN=Sales Team,OU=MailGroups,DC=example,DC=com', name=['Sales Team'])
        ]
        client = self.connected_client()

        groups = client.search_mail_groups()

        self.assertEqual(groups[0].name, 'Sales Team')
        self.assertEqual(groups[0].dn, 'CN=Sales Team,OU=MailGroups,DC=example,DC=com')
        kwargs = self.connection.search.call_args.kwargs
        self.assertEqual(kwargs['search_base'], 'OU=MailGroups,DC=example,DC=com')
        self.assertEqual(kwargs['search_filter'], GROUP_FILTER)

    def test_empty_result_is_not_an_error(self):
        self.connection.search.return_value = False
        self.connection.result = {'result': 0, 'description': 'success'}
        client = self.connected_client()

        self.assertEqual(client.search_mail_groups(), [])

    def test_search_failure(self):
        client = self.connected_client()
        self.connection.search.return_value = False
        self.connection.result = {'result': 32, 'description': 'noSuchObject'}

        with self.assertRaises(DirectoryQueryError):
            client.search_organizational_units()

    def test_search_requires_connection(self):
        client = DirectoryClient(self.config)

        with self.assertRaises(DirectoryQueryError):
            client.search_users()


class TestWrites(DirectoryClientTestCase):
    """Test cases for add, delete and modify requests."""

    def test_add_group(self):
        self.connection.add.return_value = True
        client = self.connected_client()

        client.add_group('CN=Sales Team,OU=MailGroups,DC=example,DC=com', 'Sales Team')

        self.connection.add.assert_called_once_with(
            'CN=Sales Team,OU=MailGroups,DC=example,DC=com',
            object_class=['group', 'top'],
            attributes={'groupType': ['-2147483646'], 'sAMAccountName': ['Sales Team']}
        )

    def test_add_group_failure(self):
        self.connection.add.return_value = False
        client = self.connected_client()
        self.connection.result = {'result': 68, 'description': 'entryAlreadyExists'}

        with self.assertRaises(DirectoryWriteError) as ctx:
            client.add_group('CN=Sales Team,OU=MailGroups,DC=example,DC=com', 'Sales Team')

        self.assertIn('entryAlreadyExists', str(ctx.exception))

    def test_delete_entry(self):
        self.connection.delete.return_value = True
        client = self.connected_client()

        client.delete_entry('CN=Sales Team,OU=Old,DC=example,DC=com')

        self.connection.delete.assert_called_once_with('CN=Sales Team,OU=Old,DC=example,DC=com')

    def test_delete_failure(self):
        self.connection.delete.return_value = False
        client = self.connected_client()

        with self.assertRaises(DirectoryWriteError):
            client.delete_entry('CN=Sales Team,OU=Old,DC=example,DC=com')

    def test_add_member(self):
        self.connection.modify.return_value = True
        client = self.connected_client()

        client.add_member('CN=Sales Team,OU=MailGroups,DC=example,DC=com',
                          'CN=Jane,OU=Sales,OU=Employees,DC=example,DC=com')

        self.connection.modify.assert_called_once_with(
            'CN=Sales Team,OU=MailGroups,DC=example,DC=com',
            {'member': [(MODIFY_ADD, ['CN=Jane,OU=Sales,OU=Employees,DC=example,DC=com'])]}
        )

    def test_writes_require_connection(self):
        client = DirectoryClient(self.config)

        with self.assertRaises(DirectoryWriteError):
            client.delete_entry('CN=Sales Team,OU=Old,DC=example,DC=com')


if __name__ == '__main__':
    unittest.main()
