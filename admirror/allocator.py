"""
UID and GID allocation.

The next free identifier is the first gap after the contiguous run that
starts at the lowest identifier in use, counting both the identifiers known
locally and those already present in the remote directory. With nothing in
use at all, the configured floor is returned.
"""

import logging
from typing import Iterable, List

logger = logging.getLogger(__name__)


def next_free_id(values: Iterable[int], floor: int) -> int:
    """
    Return the next free identifier.

    Args:
        values: Identifiers in use, in any order and possibly repeated
        floor: Identifier returned when ``values`` is empty

    Returns:
        One past the end of the contiguous run starting at min(values)

    Example:
        next_free_id([1000, 1001, 1002, 1005], 1000) == 1003
    """
    in_use = set(values)
    if not in_use:
        return floor
    candidate = min(in_use)
    while candidate in in_use:
        candidate += 1
    return candidate


class IdentifierAllocator:
    """Allocates UIDs and GIDs for one directory."""

    def __init__(self, directory):
        self.directory = directory

    def _remote(self):
        from admirror.remote import RemoteDirectory
        return RemoteDirectory(self.directory)

    def remote_uids(self) -> List[int]:
        if self.directory.client is None:
            return []
        return self._remote().uids()

    def remote_gids(self) -> List[int]:
        if self.directory.client is None:
            return []
        return self._remote().gids()

    def next_uid(self) -> int:
        uid = next_free_id(list(self.directory.uids) + self.remote_uids(), self.directory.min_uid)
        self.directory.logger.debug(f"Next free UID is {uid}")
        return uid

    def next_gid(self) -> int:
        gid = next_free_id(list(self.directory.gids) + self.remote_gids(), self.directory.min_gid)
        self.directory.logger.debug(f"Next free GID is {gid}")
        return gid
