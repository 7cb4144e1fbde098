"""
User objects of the identity graph.

A User is a Windows account. A UNIX user is the same class carrying a
PosixAccount extension record; ``is_unix`` is the capability check.

Membership in the primary group is implicit: a user never appears in its
primary group's explicit member list. A UNIX user's main group grants
implicit UNIX membership, and ordinary Windows membership as well when it is
not also the primary group.
"""

from dataclasses import dataclass
from typing import List, Optional

from admirror.constants import DEFAULT_UNIX_PASSWORD, PRIMARY_GROUP_TYPES
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
class PosixAccount:
    """UNIX attributes of a user account. Shadow fields follow /etc/shadow."""
    uid: int
    unix_main_group_key: int
    shell: str
    home_directory: str
    nis_domain: str
    gecos: Optional[str] = None
    unix_password: str = DEFAULT_UNIX_PASSWORD
    shadow_expire: Optional[int] = None
    shadow_flag: Optional[int] = None
    shadow_inactive: Optional[int] = None
    shadow_last_change: Optional[int] = None
    shadow_max: Optional[int] = None
    shadow_min: Optional[int] = None
    shadow_warning: Optional[int] = None


def _tracked(name: str):
    attr = '_' + name

    def getter(self):
        return getattr(self, attr)

    def setter(self, value):
        self._require_active()
        setattr(self, attr, value)
        self._modified = True

    return property(getter, setter)


def _posix_field(name: str):

    def getter(self):
        return getattr(self._posix, name) if self._posix else None

    def setter(self, value):
        self._require_active()
        if self._posix is None:
            raise NotUnixError(f"{self.username} is not a UNIX user.")
        setattr(self._posix, name, value)
        self._modified = True

    return property(getter, setter)


class User(Principal):
    """
    A Windows user account, optionally extended with UNIX attributes.

    Passing ``uid`` and ``unix_main_group`` (plus ``shell`` and
    ``home_directory``) creates the UNIX variant; see ``UNIXUser``.
    """

    def __init__(self, container, username: str, primary_group, disabled: bool = False,
                 rid: Optional[int] = None, uid: Optional[int] = None,
                 unix_main_group=None, shell: Optional[str] = None,
                 home_directory: Optional[str] = None, nis_domain: Optional[str] = None):
        super().__init__(container, rid)
        directory = self._directory

        if not username:
            raise DirectoryError("User username is required.")
        if rid is not None and rid in directory.rids:
            raise DuplicateIdentifierError(f"RID {rid} is already in use in the directory.")
        if directory.find_user_by_username(username):
            raise DuplicateNameError(f"User {username} is already in the directory.")
        self._check_primary_group(primary_group)

        unix = uid is not None or unix_main_group is not None
        if unix:
            if uid is None:
                raise DirectoryError("A UNIX user requires a UID.")
            if uid in directory.uids:
                raise DuplicateIdentifierError(f"UID {uid} is already in use in the directory.")
            self._check_unix_main_group(unix_main_group)
            if shell is None or home_directory is None:
                raise DirectoryError("A UNIX user requires a shell and a home directory.")

        self.username = username
        self._disabled = bool(disabled)
        self._primary_group_key = primary_group.key
        self._group_keys = []
        self._removed_group_keys = []
        self._first_name = username
        self._initials = None
        self._middle_name = None
        self._surname = None
        self._script_path = None
        self._profile_path = None
        self._local_path = None
        self._local_drive = None
        self._password = None
        self._must_change_password = False
        # Set when creation left the account with its initial status.
        self._setup_pending = False
        self._posix = None
        if unix:
            self._posix = PosixAccount(
                uid=uid,
                unix_main_group_key=unix_main_group.key,
                shell=shell,
                home_directory=home_directory,
                nis_domain=nis_domain or directory.nis_domain,
                gecos=username,
            )

        container.add_user(self)
        if unix and unix_main_group is not primary_group:
            unix_main_group.add_user(self)

    def _rdn_value(self) -> str:
        return self.username

    def _check_primary_group(self, group):
        if group is None:
            raise DirectoryError("User primary group is required.")
        if group.removed:
            raise RemovedEntityError("User primary group cannot be a removed group.")
        self._check_same_directory(group, "Primary group")
        if group.group_type not in PRIMARY_GROUP_TYPES:
            raise GroupTypeError(
                "User primary group must be of type GROUP_GLOBAL_SECURITY"
                " or GROUP_UNIVERSAL_SECURITY."
            )

    def _check_unix_main_group(self, group):
        if group is None:
            raise DirectoryError("A UNIX user requires a UNIX main group.")
        self._check_same_directory(group, "UNIX main group")
        if group.removed:
            raise RemovedEntityError("UNIX main group cannot be a removed group.")
        if not group.is_unix:
            raise GroupTypeError("UNIX main group must be a UNIX group.")

    # Windows attributes

    first_name = _tracked('first_name')
    initials = _tracked('initials')
    middle_name = _tracked('middle_name')
    surname = _tracked('surname')
    script_path = _tracked('script_path')
    profile_path = _tracked('profile_path')
    password = _tracked('password')

    @property
    def disabled(self) -> bool:
        return self._disabled

    def disable(self):
        self._require_active()
        if not self._disabled:
            self._disabled = True
            self._modified = True

    def enable(self):
        self._require_active()
        if self._disabled:
            self._disabled = False
            self._modified = True

    @property
    def local_path(self) -> Optional[str]:
        return self._local_path

    @local_path.setter
    def local_path(self, path: Optional[str]):
        """Set a local home path; this disconnects any mapped drive."""
        self._require_active()
        self._local_drive = None
        self._local_path = path
        self._modified = True

    @property
    def local_drive(self) -> Optional[str]:
        return self._local_drive

    def connect_drive_to(self, drive: str, path: str):
        """Map a drive letter such as "Z:" to a network home path."""
        self._require_active()
        self._local_drive = drive
        self._local_path = path
        self._modified = True

    @property
    def must_change_password(self) -> bool:
        return self._must_change_password

    def force_change_password(self):
        self._require_active()
        self._must_change_password = True
        self._modified = True

    def unset_change_password(self):
        self._require_active()
        self._must_change_password = False
        self._modified = True

    # UNIX attributes

    shell = _posix_field('shell')
    home_directory = _posix_field('home_directory')
    nis_domain = _posix_field('nis_domain')
    gecos = _posix_field('gecos')
    unix_password = _posix_field('unix_password')
    shadow_expire = _posix_field('shadow_expire')
    shadow_flag = _posix_field('shadow_flag')
    shadow_inactive = _posix_field('shadow_inactive')
    shadow_last_change = _posix_field('shadow_last_change')
    shadow_max = _posix_field('shadow_max')
    shadow_min = _posix_field('shadow_min')
    shadow_warning = _posix_field('shadow_warning')

    @property
    def is_unix(self) -> bool:
        return self._posix is not None

    @property
    def posix(self) -> Optional[PosixAccount]:
        return self._posix

    @property
    def uid(self) -> Optional[int]:
        return self._posix.uid if self._posix else None

    @property
    def gid(self) -> Optional[int]:
        if self._posix is None:
            return None
        return self.unix_main_group.gid

    @property
    def unix_main_group(self):
        if self._posix is None:
            return None
        return self._directory._resolve(self._posix.unix_main_group_key)

    @unix_main_group.setter
    def unix_main_group(self, group):
        self._require_active()
        if self._posix is None:
            raise NotUnixError(f"{self.username} is not a UNIX user.")
        self._check_unix_main_group(group)

        self._posix.unix_main_group_key = group.key
        if group is not self.primary_group:
            group.add_user(self)
        self._modified = True

    # Memberships

    @property
    def primary_group(self):
        return self._directory._resolve(self._primary_group_key)

    @primary_group.setter
    def primary_group(self, group):
        """
        Change the primary Windows group.

        The new group is assigned first, then any explicit membership in it
        is removed, and finally the user becomes an explicit member of the
        old primary group, which is what the directory itself does.
        """
        self._require_active()
        self._check_primary_group(group)
        old_group = self.primary_group
        if group is old_group:
            return

        self._primary_group_key = group.key
        if self.key in group._user_keys:
            group.remove_user(self)
        old_group.add_user(self)
        self._modified = True

    @property
    def groups(self) -> List:
        return [self._directory._resolve(key) for key in self._group_keys]

    @property
    def removed_groups(self) -> List:
        return [self._directory._resolve(key) for key in self._removed_group_keys]

    def add_group(self, group):
        self._require_active()
        if group.removed:
            raise RemovedEntityError("Cannot add a removed group.")
        self._check_same_directory(group, "Group")
        if group is self.primary_group:
            raise MembershipError("User is already a member of their primary group.")
        group.add_user(self)

    def remove_group(self, group):
        self._require_active()
        if group.removed:
            raise RemovedEntityError("Cannot remove a removed group.")
        if (self.is_unix and not self.removed and group is self.unix_main_group
                and group is not self.primary_group):
            raise MembershipError("A UNIX user cannot be removed from their UNIX main group.")
        if self.key in group._user_keys or group.key in self._group_keys:
            group.remove_user(self)

    def _forget_group(self, group):
        for keys in (self._group_keys, self._removed_group_keys):
            if group.key in keys:
                keys.remove(group.key)

    def member_of(self, group) -> bool:
        return group.key in self._group_keys or group is self.primary_group

    def __str__(self):
        kind = "UNIXUser" if self.is_unix else "User"
        status = "USER_DISABLED" if self._disabled else "USER_ENABLED"
        ids = f"RID {self.rid}"
        if self.is_unix:
            ids += f", UID {self.uid}, GID {self.gid}"
        return f"{kind} [({status}, {ids}) {self.username} {self.distinguished_name}]"

    def __repr__(self):
        return f"<{self}>"


def UNIXUser(container, username: str, primary_group, uid: int, unix_main_group,
             shell: str, home_directory: str, nis_domain: Optional[str] = None,
             disabled: bool = False, rid: Optional[int] = None) -> User:
    """Create a user account carrying UNIX attributes."""
    if uid is None or unix_main_group is None:
        raise DirectoryError("A UNIX user requires a UID and a UNIX main group.")
    return User(container, username, primary_group, disabled=disabled, rid=rid,
                uid=uid, unix_main_group=unix_main_group, shell=shell,
                home_directory=home_directory, nis_domain=nis_domain)
