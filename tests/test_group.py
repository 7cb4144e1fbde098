#!/usr/bin/env python3
"""
Unit tests for Windows and UNIX groups.
"""

import os
import sys
import unittest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from admirror import (
    GROUP_GLOBAL_SECURITY,
    GROUP_UNIVERSAL_DISTRIBUTION,
    Container,
    Directory,
    Group,
    UNIXGroup,
    User,
)
from admirror.constants import EntityState, LogLevel
from admirror.errors import (
    CrossDirectoryError,
    DirectoryError,
    DuplicateIdentifierError,
    DuplicateNameError,
    GroupInUseError,
    GroupTypeError,
    MembershipError,
    NotUnixError,
    RemovedEntityError,
)


class GroupTestCase(unittest.TestCase):

    def setUp(self):
        self.directory = Directory('dc=example,dc=com', log_level=LogLevel.NONE)
        self.domain_users = Group(self.directory.default_container, 'Domain Users', rid=513)
        self.people = Container(self.directory, 'ou=People')


class TestGroup(GroupTestCase):

    def test_defaults(self):
        group = Group(self.people, 'staff')
        self.assertEqual(group.group_type, GROUP_GLOBAL_SECURITY)
        self.assertFalse(group.is_unix)
        self.assertIsNone(group.gid)
        self.assertTrue(group.modified)
        self.assertEqual(group.distinguished_name, 'cn=staff,ou=People,dc=example,dc=com')
        self.assertIn(group, self.people.groups)
        self.assertIs(self.directory.find_group_by_name('STAFF'), group)

    def test_str(self):
        group = Group(self.people, 'staff', rid=1100)
        self.assertEqual(str(group), 'Group [(GROUP_GLOBAL_SECURITY, RID 1100) '
                                     'cn=staff,ou=People,dc=example,dc=com]')

    def test_name_required(self):
        with self.assertRaises(DirectoryError):
            Group(self.people, '  ')

    def test_duplicate_name(self):
        Group(self.people, 'staff')
        with self.assertRaises(DuplicateNameError):
            Group(self.directory.default_container, 'Staff')

    def test_duplicate_rid(self):
        with self.assertRaises(DuplicateIdentifierError):
            Group(self.people, 'staff', rid=513)

    def test_unknown_group_type(self):
        with self.assertRaises(GroupTypeError):
            Group(self.people, 'staff', group_type=42)
        self.assertIsNone(self.directory.find_group_by_name('staff'))

    def test_nested_groups(self):
        staff = Group(self.people, 'staff')
        devs = Group(self.people, 'devs')
        staff.add_group(devs)
        self.assertIn(devs, staff.groups)
        self.assertTrue(devs.member_of(staff))
        with self.assertRaises(MembershipError):
            staff.add_group(staff)

        staff.remove_group(devs)
        self.assertEqual(staff.groups, [])
        self.assertIn(devs, staff.removed_groups)
        staff.add_group(devs)
        self.assertEqual(staff.removed_groups, [])

    def test_cross_directory_membership(self):
        other = Directory('dc=other,dc=com', log_level=LogLevel.NONE)
        foreign = Group(other.default_container, 'foreign')
        staff = Group(self.people, 'staff')
        with self.assertRaises(CrossDirectoryError):
            staff.add_group(foreign)

    def test_cannot_add_user_to_its_primary_group(self):
        user = User(self.people, 'alice', self.domain_users)
        with self.assertRaises(MembershipError):
            self.domain_users.add_user(user)

    def test_windows_group_has_no_unix_fields(self):
        group = Group(self.people, 'staff')
        self.assertIsNone(group.nis_domain)
        with self.assertRaises(NotUnixError):
            group.unix_password = 'x'


class TestRemoveGroup(GroupTestCase):

    def test_remove_cascades_memberships(self):
        staff = Group(self.people, 'staff', rid=1200)
        devs = Group(self.people, 'devs')
        user = User(self.people, 'alice', self.domain_users)
        staff.add_user(user)
        devs.add_group(staff)

        self.people.remove_group(staff)
        self.assertEqual(staff.state, EntityState.PENDING_REMOVAL)
        self.assertNotIn(staff, devs.groups)
        self.assertIn(staff, devs.removed_groups)
        self.assertNotIn(staff, user.groups)
        self.assertIn(staff, user.removed_groups)
        self.assertNotIn(1200, self.directory.rids)
        self.assertIs(self.directory.find_group_by_name('staff', removed=True), staff)

    def test_primary_group_cannot_be_removed(self):
        primary = Group(self.people, 'primary')
        User(self.people, 'alice', primary)
        with self.assertRaises(GroupInUseError):
            self.people.remove_group(primary)
        self.assertFalse(primary.removed)

    def test_removed_group_rejects_changes(self):
        staff = Group(self.people, 'staff')
        user = User(self.people, 'alice', self.domain_users)
        self.people.remove_group(staff)
        with self.assertRaises(RemovedEntityError):
            user.add_group(staff)

    def test_destroy_group(self):
        staff = Group(self.people, 'staff')
        devs = Group(self.people, 'devs')
        devs.add_group(staff)
        self.people.destroy_group(staff)
        self.assertEqual(staff.state, EntityState.DESTROYED)
        self.assertEqual(devs.groups, [])
        self.assertIsNone(self.directory.find_group_by_name('staff', removed=True))
        with self.assertRaises(RemovedEntityError):
            staff.add_user(User(self.people, 'alice', self.domain_users))

    def test_primary_group_of_pending_user_cannot_be_destroyed(self):
        staff = Group(self.people, 'staff')
        user = User(self.people, 'alice', staff)
        self.people.remove_user(user)
        with self.assertRaises(GroupInUseError):
            self.people.destroy_group(staff)

        self.people.destroy_user(user)
        self.people.destroy_group(staff)
        self.assertEqual(staff.state, EntityState.DESTROYED)

    def test_destroyed_unix_group_rejects_changes(self):
        staff = UNIXGroup(self.people, 'staff', 2000)
        self.people.destroy_group(staff)
        with self.assertRaises(RemovedEntityError):
            staff.nis_domain = 'other'
        with self.assertRaises(RemovedEntityError):
            staff.unix_password = 'secret'
        self.assertEqual(staff.nis_domain, 'admirror')


class TestUnixGroup(GroupTestCase):

    def test_defaults(self):
        staff = UNIXGroup(self.people, 'staff', 2000)
        self.assertTrue(staff.is_unix)
        self.assertEqual(staff.gid, 2000)
        self.assertEqual(staff.nis_domain, 'admirror')
        self.assertEqual(staff.unix_password, '*')
        self.assertIn(2000, self.directory.gids)
        self.assertIs(self.directory.find_group_by_gid(2000), staff)
        self.assertTrue(str(staff).startswith('UNIXGroup [(GROUP_GLOBAL_SECURITY, RID None, GID 2000)'))

    def test_gid_unique(self):
        UNIXGroup(self.people, 'staff', 2000)
        with self.assertRaises(DuplicateIdentifierError):
            UNIXGroup(self.people, 'devs', 2000)

    def test_gid_required(self):
        with self.assertRaises(DirectoryError):
            UNIXGroup(self.people, 'staff', None)

    def test_distribution_group(self):
        mail = UNIXGroup(self.people, 'mail', 2001, group_type=GROUP_UNIVERSAL_DISTRIBUTION)
        self.assertEqual(mail.group_type, GROUP_UNIVERSAL_DISTRIBUTION)

    def test_setters_mark_modified(self):
        staff = UNIXGroup(self.people, 'staff', 2000, nis_domain='corp')
        staff.set_loaded()
        self.assertEqual(staff.nis_domain, 'corp')
        staff.nis_domain = 'other'
        self.assertTrue(staff.modified)
        self.assertEqual(staff.posix.nis_domain, 'other')

    def test_remove_releases_gid(self):
        staff = UNIXGroup(self.people, 'staff', 2000)
        self.people.remove_group(staff)
        self.assertNotIn(2000, self.directory.gids)
        UNIXGroup(self.people, 'devs', 2000)


if __name__ == '__main__':
    unittest.main()
