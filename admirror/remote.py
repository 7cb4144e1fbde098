"""
Read-only questions asked of the remote directory.
"""

import logging
from typing import List, Optional

from admirror.schema import GROUP_FILTER, USER_FILTER, DirectoryEntry

logger = logging.getLogger(__name__)


class RemoteDirectory:
    """Queries against the remote side of a directory, through its client."""

    def __init__(self, directory):
        self.directory = directory
        self.client = directory.client

    def fetch(self, dn: str, search_filter: str = '(objectClass=*)',
              attributes=None) -> Optional[DirectoryEntry]:
        """Return the entry at ``dn`` or None if it does not exist."""
        entries = self.client.search(dn, search_filter, scope='base', attributes=attributes)
        return entries[0] if entries else None

    def uids(self) -> List[int]:
        """Every uidNumber carried by a user entry under the directory root."""
        return self._numbers(f'(&{USER_FILTER}(uidNumber=*))', 'uidNumber')

    def gids(self) -> List[int]:
        """Every gidNumber carried by a group entry under the directory root."""
        return self._numbers(f'(&{GROUP_FILTER}(gidNumber=*))', 'gidNumber')

    def _numbers(self, search_filter: str, attribute: str) -> List[int]:
        numbers = []
        for entry in self.client.paged_search(self.directory.root, search_filter, [attribute]):
            for value in entry.text_values(attribute):
                try:
                    numbers.append(int(value))
                except ValueError:
                    logger.warning(f"Ignoring non-numeric {attribute} {value!r} on {entry.dn}")
        return numbers

    def is_primary_group(self, group) -> bool:
        """True if any remote user has ``group`` as its primary Windows group."""
        if group.rid is None:
            return False
        search_filter = f'(&{USER_FILTER}(primaryGroupID={group.rid}))'
        return any(True for _ in self.client.paged_search(self.directory.root, search_filter,
                                                           ['primaryGroupID']))

    def is_unix_main_group(self, group) -> bool:
        """True if any remote user has the GID of ``group`` as its UNIX main group."""
        if not group.is_unix:
            return False
        search_filter = f'(&{USER_FILTER}(gidNumber={group.gid}))'
        return any(True for _ in self.client.paged_search(self.directory.root, search_filter,
                                                           ['gidNumber']))
