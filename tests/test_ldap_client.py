#!/usr/bin/env python3
"""
Unit tests for the ldap3 backed directory client.

The ldap3 Server and Connection classes are mocked; these tests check how
the client drives them and how it turns their results into entries and
OperationResult values.
"""

import os
import sys
import unittest
from unittest.mock import MagicMock, patch

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ldap3 import BASE, LEVEL, MODIFY_ADD, MODIFY_DELETE, MODIFY_REPLACE, SUBTREE
from ldap3.core.exceptions import LDAPException, LDAPSocketOpenError

from admirror.ldap_client import (
    DirectoryClient,
    LDAPConnectionError,
    LDAPQueryError,
    OperationResult,
    build_changes,
)


def make_config(**overrides):
    config = {
        'root': 'dc=example,dc=com',
        'server': 'dc1.example.com',
        'port': 636,
        'bind_user': 'cn=Administrator,cn=Users',
        'bind_password': 'secret',
        'error_handling': {'max_retries': 2, 'retry_wait_seconds': 0},
    }
    config.update(overrides)
    return config


def search_item(dn, **attributes):
    return {'type': 'searchResEntry', 'dn': dn, 'raw_attributes': attributes}


class TestBuildChanges(unittest.TestCase):

    def test_operations_map_to_ldap3_changes(self):
        changes = build_changes([
            ('replace', 'sn', 'Smith'),
            ('add', 'member', 'cn=a,dc=example,dc=com'),
            ('delete', 'member', 'cn=b,dc=example,dc=com'),
            ('replace', 'gidNumber', 2000),
            ('replace', 'shadowMax', None),
        ])
        self.assertEqual(changes['sn'], [(MODIFY_REPLACE, ['Smith'])])
        self.assertEqual(changes['member'], [(MODIFY_ADD, ['cn=a,dc=example,dc=com']),
                                             (MODIFY_DELETE, ['cn=b,dc=example,dc=com'])])
        self.assertEqual(changes['gidNumber'], [(MODIFY_REPLACE, ['2000'])])
        self.assertEqual(changes['shadowMax'], [(MODIFY_REPLACE, [])])

    def test_bytes_are_kept(self):
        changes = build_changes([('replace', 'unicodePwd', b'"\x00x\x00"\x00')])
        self.assertEqual(changes['unicodePwd'], [(MODIFY_REPLACE, [b'"\x00x\x00"\x00'])])

    def test_unknown_operation(self):
        with self.assertRaises(LDAPQueryError):
            build_changes([('increment', 'uidNumber', 1)])


class TestOperationResult(unittest.TestCase):

    def test_ok_and_str(self):
        self.assertTrue(OperationResult(0).ok)
        result = OperationResult(68, 'entryAlreadyExists', 'already there')
        self.assertFalse(result.ok)
        self.assertEqual(str(result), '68 entryAlreadyExists: already there')


class TestDirectoryClient(unittest.TestCase):

    def test_configuration(self):
        client = DirectoryClient(make_config())
        self.assertEqual(client.bind_dn, 'cn=Administrator,cn=Users,dc=example,dc=com')
        self.assertEqual(client.max_retries, 2)
        self.assertEqual(str(client), 'ldaps://dc1.example.com:636')

        client = DirectoryClient(make_config(bind_user='cn=svc,dc=example,dc=com', use_ssl=False,
                                             port=389))
        self.assertEqual(client.bind_dn, 'cn=svc,dc=example,dc=com')
        self.assertEqual(str(client), 'ldap://dc1.example.com:389')
        self.assertIsNone(client._create_tls_config())

    @patch('admirror.ldap_client.Connection')
    @patch('admirror.ldap_client.Server')
    def test_connect_binds_once(self, mock_server, mock_connection):
        connection = mock_connection.return_value
        connection.bind.return_value = True
        client = DirectoryClient(make_config())

        self.assertTrue(client.connect())
        self.assertTrue(client.connect())
        mock_server.assert_called_once()
        connection.open.assert_called_once()
        _, kwargs = mock_connection.call_args
        self.assertEqual(kwargs['user'], 'cn=Administrator,cn=Users,dc=example,dc=com')
        self.assertEqual(kwargs['password'], 'secret')

    @patch('admirror.retry.time.sleep')
    @patch('admirror.ldap_client.Connection')
    @patch('admirror.ldap_client.Server')
    def test_connect_retries_transient_errors(self, mock_server, mock_connection, mock_sleep):
        connection = mock_connection.return_value
        connection.open.side_effect = [LDAPSocketOpenError('unreachable'), None]
        connection.bind.return_value = True
        client = DirectoryClient(make_config())

        self.assertTrue(client.connect())
        self.assertEqual(connection.open.call_count, 2)
        mock_sleep.assert_called_once_with(0)

    @patch('admirror.retry.time.sleep')
    @patch('admirror.ldap_client.Connection')
    @patch('admirror.ldap_client.Server')
    def test_connect_gives_up(self, mock_server, mock_connection, mock_sleep):
        mock_connection.return_value.open.side_effect = LDAPSocketOpenError('unreachable')
        client = DirectoryClient(make_config())
        with self.assertRaises(LDAPConnectionError):
            client.connect()
        self.assertEqual(mock_connection.return_value.open.call_count, 3)

    @patch('admirror.ldap_client.Connection')
    @patch('admirror.ldap_client.Server')
    def test_bind_failure(self, mock_server, mock_connection):
        connection = mock_connection.return_value
        connection.bind.return_value = False
        connection.result = {'result': 49, 'description': 'invalidCredentials'}
        client = DirectoryClient(make_config())
        with self.assertRaises(LDAPConnectionError) as context:
            client.connect()
        self.assertIn('Bind as', str(context.exception))


class ConnectedClientTestCase(unittest.TestCase):

    def setUp(self):
        self.client = DirectoryClient(make_config())
        self.connection = MagicMock()
        self.connection.result = {'result': 0, 'description': 'success', 'message': ''}
        self.client.connection = self.connection
        self.client._connected = True


class TestSearch(ConnectedClientTestCase):

    def test_search_builds_entries(self):
        self.connection.response = [
            search_item('cn=alice,cn=Users,dc=example,dc=com',
                        sAMAccountName=[b'alice'], uidNumber=[b'1500']),
            {'type': 'searchResRef', 'uri': ['ldap://elsewhere']},
        ]
        entries = self.client.search('cn=Users,dc=example,dc=com', '(objectClass=user)',
                                     scope='level', attributes=['sAMAccountName'])
        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0].dn, 'cn=alice,cn=Users,dc=example,dc=com')
        self.assertEqual(entries[0].first('samaccountname'), 'alice')
        _, kwargs = self.connection.search.call_args
        self.assertEqual(kwargs['search_scope'], LEVEL)
        self.assertEqual(kwargs['attributes'], ['sAMAccountName'])

    def test_missing_base_returns_nothing(self):
        self.connection.result = {'result': 32, 'description': 'noSuchObject'}
        self.assertEqual(self.client.search('ou=Gone,dc=example,dc=com', '(objectClass=*)',
                                            scope='base'), [])
        _, kwargs = self.connection.search.call_args
        self.assertEqual(kwargs['search_scope'], BASE)

    def test_search_error(self):
        self.connection.result = {'result': 50, 'description': 'insufficientAccessRights'}
        with self.assertRaises(LDAPQueryError):
            self.client.search('dc=example,dc=com', '(objectClass=*)')

    def test_search_exception(self):
        self.connection.search.side_effect = LDAPException('socket closed')
        with self.assertRaises(LDAPQueryError):
            self.client.search('dc=example,dc=com', '(objectClass=*)')

    @patch('admirror.retry.time.sleep')
    def test_busy_search_is_retried(self, mock_sleep):
        results = iter([{'result': 51, 'description': 'busy'},
                        {'result': 0, 'description': 'success'}])

        def search(**kwargs):
            self.connection.result = next(results)

        self.connection.search.side_effect = search
        self.connection.response = [search_item('cn=a,dc=example,dc=com')]
        entries = self.client.search('dc=example,dc=com', '(objectClass=*)')
        self.assertEqual(len(entries), 1)
        self.assertEqual(self.connection.search.call_count, 2)

    @patch('admirror.retry.time.sleep')
    def test_busy_search_gives_up(self, mock_sleep):
        self.connection.result = {'result': 51, 'description': 'busy'}
        with self.assertRaises(LDAPQueryError) as context:
            self.client.search('dc=example,dc=com', '(objectClass=*)')
        self.assertIn('after 3 attempts', str(context.exception))
        self.assertEqual(self.connection.search.call_count, 3)

    @patch('admirror.retry.time.sleep')
    @patch('admirror.ldap_client.Connection')
    @patch('admirror.ldap_client.Server')
    def test_broken_connection_is_reopened(self, mock_server, mock_connection, mock_sleep):
        self.connection.search.side_effect = LDAPSocketOpenError('socket closed')
        fresh = mock_connection.return_value
        fresh.bind.return_value = True
        fresh.result = {'result': 0, 'description': 'success'}
        fresh.response = [search_item('cn=a,dc=example,dc=com')]

        entries = self.client.search('dc=example,dc=com', '(objectClass=*)')
        self.assertEqual(len(entries), 1)
        fresh.open.assert_called_once()
        self.assertIs(self.client.connection, fresh)

    def test_paged_search(self):
        self.connection.extend.standard.paged_search.return_value = iter([
            search_item('cn=a,dc=example,dc=com', uidNumber=[b'1000']),
            search_item('cn=b,dc=example,dc=com', uidNumber=[b'1001']),
        ])
        entries = list(self.client.paged_search('dc=example,dc=com', '(uidNumber=*)', ['uidNumber']))
        self.assertEqual([entry.first('uidNumber') for entry in entries], ['1000', '1001'])
        _, kwargs = self.connection.extend.standard.paged_search.call_args
        self.assertEqual(kwargs['search_scope'], SUBTREE)
        self.assertEqual(kwargs['paged_size'], 1000)
        self.assertTrue(kwargs['generator'])


class TestWrites(ConnectedClientTestCase):

    def test_add_drops_empty_values(self):
        result = self.client.add('cn=staff,cn=Users,dc=example,dc=com', ['top', 'group'],
                                 {'sAMAccountName': 'staff', 'gidNumber': 2000,
                                  'description': None, 'mail': ''})
        self.assertTrue(result.ok)
        self.connection.add.assert_called_once_with(
            'cn=staff,cn=Users,dc=example,dc=com', ['top', 'group'],
            {'sAMAccountName': ['staff'], 'gidNumber': ['2000']})

    def test_modify_returns_result_code(self):
        self.connection.result = {'result': 53, 'description': 'unwillingToPerform',
                                  'message': 'no'}
        result = self.client.modify('cn=alice,dc=example,dc=com',
                                    [('replace', 'primaryGroupID', 1100)])
        self.assertEqual(result, OperationResult(53, 'unwillingToPerform', 'no'))
        self.connection.modify.assert_called_once_with(
            'cn=alice,dc=example,dc=com', {'primaryGroupID': [(MODIFY_REPLACE, ['1100'])]})

    def test_empty_modify_is_skipped(self):
        self.assertTrue(self.client.modify('cn=alice,dc=example,dc=com', []).ok)
        self.connection.modify.assert_not_called()

    def test_delete(self):
        self.assertTrue(self.client.delete('cn=alice,dc=example,dc=com').ok)
        self.connection.delete.assert_called_once_with('cn=alice,dc=example,dc=com')

    @patch('admirror.retry.time.sleep')
    def test_busy_write_is_retried(self, mock_sleep):
        results = iter([{'result': 51, 'description': 'busy'},
                        {'result': 0, 'description': 'success'}])

        def delete(dn):
            self.connection.result = next(results)

        self.connection.delete.side_effect = delete
        self.assertTrue(self.client.delete('cn=alice,dc=example,dc=com').ok)
        self.assertEqual(self.connection.delete.call_count, 2)

    @patch('admirror.retry.time.sleep')
    def test_unavailable_write_reports_last_result(self, mock_sleep):
        self.connection.result = {'result': 52, 'description': 'unavailable', 'message': ''}
        result = self.client.modify('cn=alice,dc=example,dc=com', [('replace', 'sn', 'Smith')])
        self.assertEqual(result, OperationResult(52, 'unavailable'))
        self.assertEqual(self.connection.modify.call_count, 3)

    def test_write_exception(self):
        self.connection.delete.side_effect = LDAPException('connection lost')
        with self.assertRaises(LDAPQueryError):
            self.client.delete('cn=alice,dc=example,dc=com')

    def test_context_manager_disconnects(self):
        with self.client as client:
            self.assertIs(client, self.client)
        self.connection.unbind.assert_called_once()
        self.assertIsNone(self.client.connection)
        self.assertFalse(self.client._connected)


if __name__ == '__main__':
    unittest.main()
