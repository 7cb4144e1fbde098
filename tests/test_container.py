#!/usr/bin/env python3
"""
Unit tests for containers and their life cycle.
"""

import os
import sys
import unittest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from admirror import Container, Directory, Group, User
from admirror.constants import EntityState, LogLevel
from admirror.errors import ContainerError, DuplicateContainerError, RemovedEntityError


class TestContainer(unittest.TestCase):

    def setUp(self):
        self.directory = Directory('dc=example,dc=com', log_level=LogLevel.NONE)

    def test_default_container_exists(self):
        self.assertEqual(self.directory.default_container.name, 'cn=Users')
        self.assertIs(self.directory.find_container('CN=users'), self.directory.default_container)

    def test_name_whitespace_is_normalized(self):
        container = Container(self.directory, ' ou=Staff , ou=People ')
        self.assertEqual(container.name, 'ou=Staff,ou=People')
        self.assertEqual(container.distinguished_name, 'ou=Staff,ou=People,dc=example,dc=com')

    def test_duplicate_name_is_case_insensitive(self):
        Container(self.directory, 'ou=People')
        before = len(self.directory.containers)
        with self.assertRaises(DuplicateContainerError):
            Container(self.directory, 'OU=People')
        self.assertEqual(len(self.directory.containers), before)

    def test_ou_under_cn_is_rejected(self):
        with self.assertRaises(ContainerError):
            Container(self.directory, 'ou=People,cn=Stuff')

    def test_cn_under_ou_is_allowed(self):
        container = Container(self.directory, 'cn=Stuff,ou=People')
        self.assertIn(container, self.directory.containers)

    def test_cannot_create_in_removed_container(self):
        container = Container(self.directory, 'ou=People')
        self.directory.remove_container(container)
        with self.assertRaises(RemovedEntityError):
            Group(container, 'late')


class TestRemoveContainer(unittest.TestCase):

    def setUp(self):
        self.directory = Directory('dc=example,dc=com', log_level=LogLevel.NONE)
        self.domain_users = Group(self.directory.default_container, 'Domain Users', rid=513)
        self.people = Container(self.directory, 'ou=People')

    def test_default_container_is_protected(self):
        with self.assertRaises(ContainerError):
            self.directory.remove_container(self.directory.default_container)
        with self.assertRaises(ContainerError):
            self.directory.destroy_container(self.directory.default_container)

    def test_remove_moves_users_and_groups(self):
        group = Group(self.people, 'staff')
        user = User(self.people, 'alice', self.domain_users)
        user.add_group(group)

        self.assertTrue(self.directory.remove_container(self.people))
        self.assertEqual(self.people.state, EntityState.PENDING_REMOVAL)
        self.assertNotIn(self.people, self.directory.containers)
        self.assertIn(self.people, self.directory.removed_containers)
        self.assertIn(user, self.directory.removed_users)
        self.assertIn(group, self.directory.removed_groups)
        self.assertEqual(self.people.users, [])
        self.assertEqual(self.people.groups, [])

    def test_group_in_use_blocks_removal(self):
        primary = Group(self.people, 'primary')
        User(self.directory.default_container, 'bob', primary)

        self.assertFalse(self.directory.remove_container(self.people))
        self.assertIn(self.people, self.directory.containers)
        self.assertIn(primary, self.people.groups)

    def test_nested_container_blocks_removal(self):
        Container(self.directory, 'ou=Staff,ou=People')
        self.assertFalse(self.directory.remove_container(self.people))
        self.assertFalse(self.people.removed)

    def test_destroy_container(self):
        self.directory.destroy_container(self.people)
        self.assertEqual(self.people.state, EntityState.DESTROYED)
        self.assertNotIn(self.people, self.directory.containers)
        self.assertIsNone(self.directory.find_container('ou=People'))

    def test_same_name_can_be_created_after_destroy(self):
        self.directory.destroy_container(self.people)
        again = Container(self.directory, 'ou=People')
        self.assertIs(self.directory.find_container('ou=people'), again)


if __name__ == '__main__':
    unittest.main()
