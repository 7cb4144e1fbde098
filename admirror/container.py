"""
Containers: organizational units and containers that hold users and groups.

Containers form a flat set inside a directory. Nesting only shows in the
name ("ou=Staff,ou=People"); the reconciler creates any missing intermediate
path segments when it creates a container remotely.
"""

import re
from typing import List

from admirror.constants import EntityState
from admirror.errors import (
    ContainerError,
    DuplicateContainerError,
    GroupInUseError,
)


def normalize_container_name(name: str) -> str:
    """Strip whitespace around path separators and at both ends."""
    return re.sub(r'\s*,\s*', ',', (name or '').strip())


class Container:
    """
    A container or organizational unit in a directory.

    The name is the distinguished name without the directory root, for
    example "ou=Staff,ou=People". Containers own the users and groups created
    in them; removing or destroying users and groups goes through the
    container they belong to.
    """

    def __init__(self, directory, name: str):
        name = normalize_container_name(name)
        if not name:
            raise ContainerError("Container name is required.")
        if re.search(r'ou=.*cn=', name, re.IGNORECASE):
            raise ContainerError("Container CN objects cannot contain OU objects.")
        if directory.find_container(name):
            raise DuplicateContainerError(f"Container {name} is already in the directory.")

        self.name = name
        self.directory = directory
        self.key = None
        self.state = EntityState.ACTIVE
        self._user_keys = []
        self._removed_user_keys = []
        self._group_keys = []
        self._removed_group_keys = []

        directory._add_container(self)

    @property
    def distinguished_name(self) -> str:
        return f"{self.name},{self.directory.root}"

    @property
    def removed(self) -> bool:
        return self.state is not EntityState.ACTIVE

    @property
    def users(self) -> List:
        return [self.directory._resolve(key) for key in self._user_keys]

    @property
    def removed_users(self) -> List:
        return [self.directory._resolve(key) for key in self._removed_user_keys]

    @property
    def groups(self) -> List:
        return [self.directory._resolve(key) for key in self._group_keys]

    @property
    def removed_groups(self) -> List:
        return [self.directory._resolve(key) for key in self._removed_group_keys]

    def _check_owner(self, item, what: str):
        if item.container is not self:
            raise ContainerError(f"{what} must be in this container.")

    def add_user(self, user):
        """Register a user with this container. Called by the user's constructor."""
        if user.removed:
            return
        if user.key is None:
            self.directory._register(user)
        self._check_owner(user, "User")
        if user.key in self._user_keys:
            return
        self._user_keys.append(user.key)
        if user.key in self._removed_user_keys:
            self._removed_user_keys.remove(user.key)
        if user.rid is not None:
            self.directory.rids.add(user.rid)
        if user.is_unix:
            self.directory.uids.add(user.uid)

    def remove_user(self, user):
        """
        Stage a user for removal from the remote directory.

        The user leaves every group it is an explicit member of, and each
        of those edges is staged so the reconciler can drop it remotely.
        """
        if user.removed:
            return
        self._check_owner(user, "User")

        self._user_keys.remove(user.key)
        self.directory.rids.discard(user.rid)
        if user.is_unix:
            self.directory.uids.discard(user.uid)
        main_group = user.unix_main_group
        for group in self.directory.groups:
            if user.key in group._user_keys and group is not main_group:
                group.remove_user(user)
        user.state = EntityState.PENDING_REMOVAL
        if main_group is not None:
            main_group.remove_user(user)
        if user.key not in self._removed_user_keys:
            self._removed_user_keys.append(user.key)

    def destroy_user(self, user):
        """Forget a user locally without touching the remote directory."""
        self._check_owner(user, "User")
        if user.key in self._user_keys:
            self._user_keys.remove(user.key)
        if user.key in self._removed_user_keys:
            self._removed_user_keys.remove(user.key)
        self.directory.rids.discard(user.rid)
        if user.is_unix:
            self.directory.uids.discard(user.uid)
        for group in self.directory.groups + self.directory.removed_groups:
            group._forget_user(user)
        user.state = EntityState.DESTROYED
        self.directory._unregister(user)

    def add_group(self, group):
        """Register a group with this container. Called by the group's constructor."""
        if group.removed:
            return
        if group.key is None:
            self.directory._register(group)
        self._check_owner(group, "Group")
        if group.key in self._group_keys:
            return
        self._group_keys.append(group.key)
        if group.key in self._removed_group_keys:
            self._removed_group_keys.remove(group.key)
        if group.rid is not None:
            self.directory.rids.add(group.rid)
        if group.is_unix:
            self.directory.gids.add(group.gid)

    def _check_group_unreferenced(self, group, action: str, users: List):
        for user in users:
            if user.primary_group is group:
                raise GroupInUseError(
                    f"Cannot {action} group {group.name}: it is "
                    f"{user.username}'s primary Windows group."
                )
            if user.unix_main_group is group:
                raise GroupInUseError(
                    f"Cannot {action} group {group.name}: it is "
                    f"{user.username}'s UNIX main group."
                )

    def remove_group(self, group):
        """
        Stage a group for removal from the remote directory.

        Raises GroupInUseError if any user in the directory still uses the
        group as its primary group or UNIX main group.
        """
        if group.removed:
            return
        self._check_owner(group, "Group")
        self._check_group_unreferenced(group, "remove", self.directory.users)

        self._group_keys.remove(group.key)
        self.directory.rids.discard(group.rid)
        if group.is_unix:
            self.directory.gids.discard(group.gid)
        for current_group in self.directory.groups:
            if group.key in current_group._group_keys:
                current_group.remove_group(group)
        for user in self.directory.users:
            if group.key in user._group_keys:
                user.remove_group(group)
        group.state = EntityState.PENDING_REMOVAL
        if group.key not in self._removed_group_keys:
            self._removed_group_keys.append(group.key)

    def destroy_group(self, group):
        """Forget a group locally without touching the remote directory."""
        self._check_owner(group, "Group")
        # Users staged for removal still resolve their groups until destroyed.
        self._check_group_unreferenced(group, "destroy",
                                       self.directory.users + self.directory.removed_users)

        if group.key in self._group_keys:
            self._group_keys.remove(group.key)
        if group.key in self._removed_group_keys:
            self._removed_group_keys.remove(group.key)
        self.directory.rids.discard(group.rid)
        if group.is_unix:
            self.directory.gids.discard(group.gid)
        for current_group in self.directory.groups + self.directory.removed_groups:
            current_group._forget_group(group)
        for user in self.directory.users + self.directory.removed_users:
            user._forget_group(group)
        group.state = EntityState.DESTROYED
        self.directory._unregister(group)

    def __str__(self):
        return f"Container <{self.name}> [{self.distinguished_name}]"

    def __repr__(self):
        return f"<{self}>"
