"""
Group objects of the identity graph.

A Group is a Windows group. A UNIX group is the same class carrying a
PosixGroup extension record; ``is_unix`` is the capability check.
"""

from dataclasses import dataclass
from typing import List, Optional

from admirror.constants import (
    DEFAULT_UNIX_PASSWORD,
    GROUP_GLOBAL_SECURITY,
    GROUP_TYPE_NAMES,
)
from admirror.encoding import group_type_to_str
from admirror.errors import (
    DirectoryError,
    DuplicateIdentifierError,
    DuplicateNameError,
    GroupTypeError,
    MembershipError,
    NotUnixError,
    RemovedEntityError,
)
from admirror.principal import Principal


@dataclass
class PosixGroup:
    """UNIX attributes of a group."""
    gid: int
    nis_domain: str
    unix_password: str = DEFAULT_UNIX_PASSWORD


class Group(Principal):
    """
    A Windows group, optionally extended with UNIX attributes.

    Groups are created through their constructor, which validates the name,
    RID and GID against the whole directory and registers the group with its
    container. The ``rid`` argument is meant for the loader; new groups get
    their RID from the directory when they are synchronized.
    """

    def __init__(self, container, name: str, group_type: int = GROUP_GLOBAL_SECURITY,
                 rid: Optional[int] = None, gid: Optional[int] = None,
                 nis_domain: Optional[str] = None):
        super().__init__(container, rid)
        directory = self._directory

        name = (name or '').strip()
        if not name:
            raise DirectoryError("Group name is required.")
        if rid is not None and rid in directory.rids:
            raise DuplicateIdentifierError(f"RID {rid} is already in use in the directory.")
        if directory.find_group_by_name(name):
            raise DuplicateNameError(f"Group {name} is already in the directory.")
        if group_type not in GROUP_TYPE_NAMES:
            raise GroupTypeError(f"Unknown group type {group_type}.")
        if gid is not None and gid in directory.gids:
            raise DuplicateIdentifierError(f"GID {gid} is already in use in the directory.")

        self.name = name
        self.group_type = group_type
        self._posix = None
        if gid is not None:
            self._posix = PosixGroup(gid, nis_domain or directory.nis_domain)

        self._user_keys = []
        self._removed_user_keys = []
        self._group_keys = []
        self._removed_group_keys = []

        container.add_group(self)

    def _rdn_value(self) -> str:
        return self.name

    @property
    def is_unix(self) -> bool:
        return self._posix is not None

    @property
    def posix(self) -> Optional[PosixGroup]:
        return self._posix

    @property
    def gid(self) -> Optional[int]:
        return self._posix.gid if self._posix else None

    @property
    def nis_domain(self) -> Optional[str]:
        return self._posix.nis_domain if self._posix else None

    @nis_domain.setter
    def nis_domain(self, nis_domain: str):
        self._require_active()
        self._require_unix()
        self._posix.nis_domain = nis_domain
        self._modified = True

    @property
    def unix_password(self) -> Optional[str]:
        return self._posix.unix_password if self._posix else None

    @unix_password.setter
    def unix_password(self, unix_password: str):
        self._require_active()
        self._require_unix()
        self._posix.unix_password = unix_password
        self._modified = True

    def _require_unix(self):
        if self._posix is None:
            raise NotUnixError(f"{self.name} is not a UNIX group.")

    @property
    def users(self) -> List:
        return [self._directory._resolve(key) for key in self._user_keys]

    @property
    def removed_users(self) -> List:
        return [self._directory._resolve(key) for key in self._removed_user_keys]

    @property
    def groups(self) -> List:
        return [self._directory._resolve(key) for key in self._group_keys]

    @property
    def removed_groups(self) -> List:
        return [self._directory._resolve(key) for key in self._removed_group_keys]

    def add_user(self, user):
        """Make a user an explicit member of this group."""
        self._require_active()
        if user.removed:
            raise RemovedEntityError("Cannot add a removed user.")
        self._check_same_directory(user, "User")
        if user.primary_group is self:
            raise MembershipError(f"{self.name} is already {user.username}'s primary group.")

        if user.key not in self._user_keys:
            self._user_keys.append(user.key)
            self._modified = True
        if user.key in self._removed_user_keys:
            self._removed_user_keys.remove(user.key)
        if self.key not in user._group_keys:
            user._group_keys.append(self.key)
        if self.key in user._removed_group_keys:
            user._removed_group_keys.remove(self.key)

    def remove_user(self, user):
        """
        Remove a user's explicit membership, staging it for remote removal.

        A UNIX user cannot leave its UNIX main group while it is active,
        unless that group is also its primary group.
        """
        self._require_active()
        main_group = user.is_unix and user.unix_main_group is self
        if not user.removed:
            if main_group and user.primary_group is not self:
                raise MembershipError("A UNIX user cannot be removed from their UNIX main group.")
        elif not main_group:
            raise RemovedEntityError("Cannot remove a removed user.")

        if user.key in self._user_keys:
            self._user_keys.remove(user.key)
            if user.key not in self._removed_user_keys:
                self._removed_user_keys.append(user.key)
            self._modified = True
        if self.key in user._group_keys:
            user._group_keys.remove(self.key)
            if self.key not in user._removed_group_keys:
                user._removed_group_keys.append(self.key)

    def _forget_user(self, user):
        for keys in (self._user_keys, self._removed_user_keys):
            if user.key in keys:
                keys.remove(user.key)

    def add_group(self, group):
        """Make another group a member of this one."""
        self._require_active()
        if group.removed:
            raise RemovedEntityError("Cannot add a removed group.")
        self._check_same_directory(group, "Group")
        if group is self:
            raise MembershipError("A group cannot have itself as a member.")

        if group.key not in self._group_keys:
            self._group_keys.append(group.key)
            self._modified = True
        if group.key in self._removed_group_keys:
            self._removed_group_keys.remove(group.key)

    def remove_group(self, group):
        self._require_active()
        if group.removed:
            raise RemovedEntityError("Cannot remove a removed group.")
        if group.key in self._group_keys:
            self._group_keys.remove(group.key)
            if group.key not in self._removed_group_keys:
                self._removed_group_keys.append(group.key)
            self._modified = True

    def _forget_group(self, group):
        for keys in (self._group_keys, self._removed_group_keys):
            if group.key in keys:
                keys.remove(group.key)

    def _clear_staged_removals(self):
        self._removed_user_keys.clear()
        self._removed_group_keys.clear()

    def member_of(self, group) -> bool:
        return self.key in group._group_keys

    def __str__(self):
        kind = "UNIXGroup" if self.is_unix else "Group"
        ids = f"RID {self.rid}"
        if self.is_unix:
            ids += f", GID {self.gid}"
        return f"{kind} [({group_type_to_str(self.group_type)}, {ids}) {self.distinguished_name}]"

    def __repr__(self):
        return f"<{self}>"


def UNIXGroup(container, name: str, gid: int, group_type: int = GROUP_GLOBAL_SECURITY,
              rid: Optional[int] = None, nis_domain: Optional[str] = None) -> Group:
    """Create a group carrying UNIX attributes."""
    if gid is None:
        raise DirectoryError("A UNIX group requires a GID.")
    return Group(container, name, group_type=group_type, rid=rid,
                 gid=gid, nis_domain=nis_domain)
