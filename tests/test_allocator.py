#!/usr/bin/env python3
"""
Unit tests for UID/GID allocation.
"""

import os
import sys
import unittest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from admirror import Directory, UNIXGroup, UNIXUser
from admirror.allocator import IdentifierAllocator, next_free_id
from admirror.constants import LogLevel
from fake_directory import FakeDirectoryClient


class TestNextFreeId(unittest.TestCase):

    def test_gap_after_contiguous_run(self):
        self.assertEqual(next_free_id([1000, 1001, 1002, 1005], 1000), 1003)

    def test_empty_returns_floor(self):
        self.assertEqual(next_free_id([], 1000), 1000)

    def test_unsorted_and_repeated_values(self):
        self.assertEqual(next_free_id([1002, 1000, 1001, 1001], 1000), 1003)

    def test_run_starts_at_lowest_value_not_floor(self):
        self.assertEqual(next_free_id([5000, 5001], 1000), 5002)

    def test_single_value(self):
        self.assertEqual(next_free_id([1000], 1000), 1001)


class TestIdentifierAllocator(unittest.TestCase):

    def setUp(self):
        self.client = FakeDirectoryClient()
        self.directory = Directory('dc=example,dc=com', client=self.client,
                                   log_level=LogLevel.NONE)

    def test_remote_uids(self):
        for uid in (1000, 1001, 1002, 1005):
            self.client.add_user_entry(f'user{uid}', uid=uid, gid=2000)
        self.assertEqual(self.directory.next_uid(), 1003)

    def test_empty_remote_returns_floor(self):
        self.assertEqual(self.directory.next_uid(), 1000)
        self.assertEqual(self.directory.next_gid(), 1000)

    def test_configured_floor(self):
        directory = Directory('dc=example,dc=com', client=self.client, min_uid=5000,
                              min_gid=6000, log_level=LogLevel.NONE)
        self.assertEqual(directory.next_uid(), 5000)
        self.assertEqual(directory.next_gid(), 6000)

    def test_local_pending_values_count(self):
        self.client.add_group_entry('remote', gid=1000)
        staff = UNIXGroup(self.directory.default_container, 'staff', 1001)
        self.assertEqual(self.directory.next_gid(), 1002)

        UNIXUser(self.directory.default_container, 'alice', staff, 1000, staff, '/bin/sh', '/home/alice')
        self.assertEqual(self.directory.next_uid(), 1001)

    def test_remote_scans(self):
        self.client.add_user_entry('bob', uid=1500, gid=1000)
        self.client.add_group_entry('remote', gid=1000)
        allocator = IdentifierAllocator(self.directory)
        self.assertEqual(allocator.remote_uids(), [1500])
        self.assertEqual(allocator.remote_gids(), [1000])

    def test_without_client_uses_local_values(self):
        directory = Directory('dc=example,dc=com', log_level=LogLevel.NONE)
        UNIXGroup(directory.default_container, 'staff', 1000)
        self.assertEqual(directory.next_gid(), 1001)
        self.assertEqual(directory.next_uid(), 1000)


if __name__ == '__main__':
    unittest.main()
