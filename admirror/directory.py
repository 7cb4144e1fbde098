"""
The Directory: root of the identity graph.

A Directory owns every container, user and group of one directory scope in an
arena keyed by integer keys, tracks the RIDs, UIDs and GIDs in use, and is the
entry point for loading from and synchronizing to the remote directory.
"""

import itertools
import logging
import re
from typing import Any, Callable, Dict, List, Optional

from admirror.constants import (
    DEFAULT_CONTAINER,
    DEFAULT_GROUP,
    DEFAULT_MIN_GID,
    DEFAULT_MIN_UID,
    DEFAULT_NIS_DOMAIN,
    EntityState,
    LogLevel,
)
from admirror.container import Container, normalize_container_name
from admirror.encoding import domain_from_root
from admirror.errors import (
    ContainerError,
    DirectoryError,
    DuplicateIdentifierError,
    GroupInUseError,
    GroupTypeError,
    NotUnixError,
    RemovedEntityError,
)
from admirror.group import Group
from admirror.logging_setup import get_directory_logger
from admirror.schema import (
    GROUP_FILTER,
    UNIX_GROUP_CLEARED_ATTRIBUTES,
    UNIX_USER_CLEARED_ATTRIBUTES,
    USER_FILTER,
)
from admirror.user import User

logger = logging.getLogger(__name__)


class Directory:
    """
    An Active Directory scope and its in-memory mirror.

    The general pattern is:

        directory = Directory('dc=example,dc=com', client=client)
        Container(directory, 'ou=People')
        directory.load()
        ... create, update or remove users and groups ...
        directory.sync()

    The "cn=Users" container is always present because most users have
    "Domain Users" as their primary group, which has to be resolvable when
    users are loaded.
    """

    def __init__(self, root: str, client=None, logger: Optional[logging.Logger] = None,
                 log_level: LogLevel = LogLevel.NORMAL, min_uid: int = DEFAULT_MIN_UID,
                 min_gid: int = DEFAULT_MIN_GID, nis_domain: str = DEFAULT_NIS_DOMAIN,
                 default_container: str = DEFAULT_CONTAINER,
                 default_group: str = DEFAULT_GROUP):
        """
        Initialize a directory.

        Args:
            root: Root distinguished name, such as "dc=example,dc=com"
            client: DirectoryClient used for load, sync and identifier scans
            logger: Logger for this directory (derived from the root if None)
            log_level: Verbosity of the derived logger
            min_uid: UID returned by next_uid() when none are in use
            min_gid: GID returned by next_gid() when none are in use
            nis_domain: Default NIS domain of new UNIX users and groups
            default_container: Name of the container that always exists
            default_group: Name of the default primary group of new accounts
        """
        if not root:
            raise DirectoryError("Directory root is required.")
        self.root = re.sub(r'\s+', '', root)
        self.domain = domain_from_root(self.root)
        self.client = client
        self.logger = logger or get_directory_logger(self.root, log_level)
        self.min_uid = min_uid
        self.min_gid = min_gid
        self.nis_domain = nis_domain
        self.default_group_name = default_group

        self.rids = set()
        self.uids = set()
        self.gids = set()

        self._keys = itertools.count(1)
        self._arena: Dict[int, Any] = {}
        self._containers: List[int] = []
        self._removed_containers: List[int] = []

        self.default_container = Container(self, default_container)

    @classmethod
    def from_config(cls, config: Dict[str, Any], client=None) -> 'Directory':
        """
        Build a directory and its client from a loaded configuration.

        Args:
            config: Configuration dictionary as returned by load_config()
            client: Client to use instead of one built from the configuration

        Returns:
            Configured Directory
        """
        from admirror.ldap_client import DirectoryClient

        directory_config = config['directory']
        identifiers = config.get('identifiers', {})
        logging_config = config.get('logging', {})
        if client is None:
            client_config = dict(directory_config)
            client_config['error_handling'] = config.get('error_handling', {})
            client = DirectoryClient(client_config)

        level = LogLevel[str(logging_config.get('directory_level', 'NORMAL')).upper()]
        kwargs = {
            'min_uid': identifiers.get('min_uid', DEFAULT_MIN_UID),
            'min_gid': identifiers.get('min_gid', DEFAULT_MIN_GID),
            'nis_domain': identifiers.get('nis_domain', DEFAULT_NIS_DOMAIN),
        }
        return cls(directory_config['root'], client=client, log_level=level, **kwargs)

    # Arena

    def _register(self, entity):
        entity.key = next(self._keys)
        self._arena[entity.key] = entity

    def _unregister(self, entity):
        self._arena.pop(entity.key, None)

    def _resolve(self, key: int):
        return self._arena[key]

    # Containers

    @property
    def containers(self) -> List[Container]:
        return [self._arena[key] for key in self._containers]

    @property
    def removed_containers(self) -> List[Container]:
        return [self._arena[key] for key in self._removed_containers]

    def find_container(self, name: str) -> Optional[Container]:
        name = normalize_container_name(name).lower()
        for container in self.containers:
            if container.name.lower() == name:
                return container
        return None

    def _add_container(self, container: Container):
        if container.directory is not self:
            raise ContainerError("Container must be in the same directory.")
        if container.key is None:
            self._register(container)
        if container.key not in self._containers:
            self._containers.append(container.key)
        if container.key in self._removed_containers:
            self._removed_containers.remove(container.key)

    def _nested_containers(self, container: Container) -> List[Container]:
        suffix = ',' + container.name.lower()
        return [current for current in self.containers
                if current is not container and current.name.lower().endswith(suffix)]

    def remove_container(self, container: Container) -> bool:
        """
        Stage a container for removal from the remote directory.

        Every user in the container is removed, as is every group that is not
        still someone's primary or UNIX main group. The container itself is
        only staged when nothing blocks it: no remaining group and no other
        known container nested under it.

        Returns:
            True if the container was staged for removal
        """
        if container.removed:
            return False
        if container is self.default_container:
            raise ContainerError(f"Cannot remove {container.name}: it is the default container.")

        can_remove = True
        for user in container.users:
            container.remove_user(user)
        for group in container.groups:
            try:
                container.remove_group(group)
            except GroupInUseError as e:
                self.logger.warning(str(e))
                can_remove = False
        for nested in self._nested_containers(container):
            self.logger.warning(f"Container {container.name} contains container {nested.name}.")
            can_remove = False

        if can_remove:
            self._containers.remove(container.key)
            if container.key not in self._removed_containers:
                self._removed_containers.append(container.key)
            container.state = EntityState.PENDING_REMOVAL
        else:
            self.logger.warning(f"Cannot fully remove container {container.name}.")
        return can_remove

    def destroy_container(self, container: Container):
        """
        Forget a container locally. Its users and groups are neither removed
        nor processed by load and sync afterwards.
        """
        if container is self.default_container:
            raise ContainerError(f"Cannot destroy {container.name}: it is the default container.")
        if container.key in self._containers:
            self._containers.remove(container.key)
        if container.key in self._removed_containers:
            self._removed_containers.remove(container.key)
        container.state = EntityState.DESTROYED

    # Users

    @property
    def users(self) -> List[User]:
        return [user for container in self.containers for user in container.users]

    @property
    def removed_users(self) -> List[User]:
        containers = self.containers + self.removed_containers
        return [user for container in containers for user in container.removed_users]

    def find_user(self, predicate: Callable[[User], bool], removed: bool = False) -> Optional[User]:
        """Return the first user matching a predicate, among removed users if asked."""
        for user in (self.removed_users if removed else self.users):
            if predicate(user):
                return user
        return None

    def find_user_by_username(self, username: str, removed: bool = False) -> Optional[User]:
        username = username.lower()
        return self.find_user(lambda user: user.username.lower() == username, removed)

    def find_user_by_rid(self, rid: int, removed: bool = False) -> Optional[User]:
        if rid is None:
            return None
        return self.find_user(lambda user: user.rid == rid, removed)

    def find_user_by_uid(self, uid: int, removed: bool = False) -> Optional[User]:
        return self.find_user(lambda user: user.is_unix and user.uid == uid, removed)

    def find_user_by_dn(self, dn: str, removed: bool = False) -> Optional[User]:
        dn = dn.lower()
        return self.find_user(lambda user: user.distinguished_name.lower() == dn, removed)

    # Groups

    @property
    def groups(self) -> List[Group]:
        return [group for container in self.containers for group in container.groups]

    @property
    def removed_groups(self) -> List[Group]:
        containers = self.containers + self.removed_containers
        return [group for container in containers for group in container.removed_groups]

    def find_group(self, predicate: Callable[[Group], bool], removed: bool = False) -> Optional[Group]:
        """Return the first group matching a predicate, among removed groups if asked."""
        for group in (self.removed_groups if removed else self.groups):
            if predicate(group):
                return group
        return None

    def find_group_by_name(self, name: str, removed: bool = False) -> Optional[Group]:
        name = name.lower()
        return self.find_group(lambda group: group.name.lower() == name, removed)

    def find_group_by_rid(self, rid: int, removed: bool = False) -> Optional[Group]:
        if rid is None:
            return None
        return self.find_group(lambda group: group.rid == rid, removed)

    def find_group_by_gid(self, gid: int, removed: bool = False) -> Optional[Group]:
        return self.find_group(lambda group: group.is_unix and group.gid == gid, removed)

    def find_group_by_dn(self, dn: str, removed: bool = False) -> Optional[Group]:
        dn = dn.lower()
        return self.find_group(lambda group: group.distinguished_name.lower() == dn, removed)

    @property
    def default_group(self) -> Optional[Group]:
        return self.find_group_by_name(self.default_group_name)

    # Conversions between the Windows and UNIX variants

    def _remote(self):
        from admirror.remote import RemoteDirectory
        return RemoteDirectory(self)

    def user_to_unix_user(self, user: User, uid: int, unix_main_group: Group, shell: str,
                          home_directory: str, nis_domain: Optional[str] = None) -> User:
        """
        Replace a Windows user with a UNIX user carrying the same account.

        The returned object takes the place of the original one, which must
        not be used afterwards.
        """
        if user.is_unix:
            raise DirectoryError(f"{user.username} is already a UNIX user.")
        if user.removed:
            raise RemovedEntityError(f"{user.username} has been removed.")
        if unix_main_group is None or not unix_main_group.is_unix:
            raise GroupTypeError("UNIX main group must be a UNIX group.")
        if unix_main_group.removed:
            raise RemovedEntityError("UNIX main group cannot be a removed group.")
        if shell is None or home_directory is None:
            raise DirectoryError("A UNIX user requires a shell and a home directory.")
        remote_uids = self._remote().uids() if self.client else []
        if uid in self.uids or uid in remote_uids:
            raise DuplicateIdentifierError(f"UID {uid} is already in use in the directory.")

        return self._replace_user(user, dict(
            uid=uid, unix_main_group=unix_main_group, shell=shell,
            home_directory=home_directory, nis_domain=nis_domain,
        ))

    def unix_user_to_user(self, user: User, remove_unix_groups: bool = False) -> User:
        """
        Replace a UNIX user with a Windows user, clearing the UNIX attributes
        of the remote account if it exists.
        """
        if not user.is_unix:
            raise NotUnixError(f"{user.username} is not a UNIX user.")
        if user.removed:
            raise RemovedEntityError(f"{user.username} has been removed.")

        dn = user.distinguished_name
        new_user = self._replace_user(user, {})
        if self.client:
            remote = self._remote()
            if remote.fetch(dn, USER_FILTER) is not None:
                ops = [('replace', name, None) for name in UNIX_USER_CLEARED_ATTRIBUTES]
                self.client.modify(dn, ops)
        if remove_unix_groups:
            for group in new_user.groups:
                if group.is_unix:
                    new_user.remove_group(group)
        return new_user

    def _replace_user(self, user: User, unix_args: Dict[str, Any]) -> User:
        container = user.container
        state = {
            'first_name': user.first_name,
            'initials': user.initials,
            'middle_name': user.middle_name,
            'surname': user.surname,
            'script_path': user.script_path,
            'profile_path': user.profile_path,
            'password': user.password,
        }
        local_path, local_drive = user.local_path, user.local_drive
        must_change_password = user.must_change_password
        groups = user.groups
        removed_groups = user.removed_groups
        loaded = user.loaded
        dn = user._distinguished_name

        container.destroy_user(user)
        new_user = User(container, user.username, user.primary_group,
                        disabled=user.disabled, rid=user.rid, **unix_args)
        if loaded:
            new_user.set_loaded()
        if dn:
            new_user._distinguished_name = dn
        for name, value in state.items():
            setattr(new_user, name, value)
        if local_path and local_drive:
            new_user.connect_drive_to(local_drive, local_path)
        elif local_path:
            new_user.local_path = local_path
        if must_change_password:
            new_user.force_change_password()
        for group in groups + removed_groups:
            if group is not new_user.primary_group and not group.removed:
                new_user.add_group(group)
        for group in removed_groups:
            if not group.removed and group is not new_user.unix_main_group:
                new_user.remove_group(group)
        return new_user

    def group_to_unix_group(self, group: Group, gid: int, nis_domain: Optional[str] = None) -> Group:
        """
        Replace a Windows group with a UNIX group. The group cannot be anyone's
        primary group while it is converted.
        """
        if group.is_unix:
            raise DirectoryError(f"{group.name} is already a UNIX group.")
        if group.removed:
            raise RemovedEntityError(f"{group.name} has been removed.")
        remote_gids = self._remote().gids() if self.client else []
        if gid in self.gids or gid in remote_gids:
            raise DuplicateIdentifierError(f"GID {gid} is already in use in the directory.")

        return self._replace_group(group, gid=gid, nis_domain=nis_domain)

    def unix_group_to_group(self, group: Group, remove_unix_users: bool = False) -> Group:
        """
        Replace a UNIX group with a Windows group, clearing the UNIX attributes
        of the remote group if it exists. Refused while the group is anyone's
        UNIX main group, locally or remotely.
        """
        if not group.is_unix:
            raise NotUnixError(f"{group.name} is not a UNIX group.")
        if group.removed:
            raise RemovedEntityError(f"{group.name} has been removed.")
        remote = self._remote() if self.client else None
        if remote is not None and remote.is_unix_main_group(group):
            raise GroupInUseError(f"Cannot convert group {group.name}: it is someone's UNIX main group.")

        dn = group.distinguished_name
        new_group = self._replace_group(group)
        if remote is not None and remote.fetch(dn, GROUP_FILTER) is not None:
            ops = [('replace', name, None) for name in UNIX_GROUP_CLEARED_ATTRIBUTES]
            self.client.modify(dn, ops)
        if remove_unix_users:
            for user in new_group.users:
                if user.is_unix:
                    new_group.remove_user(user)
        return new_group

    def _replace_group(self, group: Group, gid: Optional[int] = None,
                       nis_domain: Optional[str] = None) -> Group:
        container = group.container
        users, removed_users = group.users, group.removed_users
        groups, removed_groups = group.groups, group.removed_groups
        parents = [current for current in self.groups if group.key in current._group_keys]
        loaded = group.loaded
        dn = group._distinguished_name

        container.destroy_group(group)
        new_group = Group(container, group.name, group_type=group.group_type,
                          rid=group.rid, gid=gid, nis_domain=nis_domain)
        if loaded:
            new_group.set_loaded()
        if dn:
            new_group._distinguished_name = dn
        for user in users + removed_users:
            if not user.removed:
                new_group.add_user(user)
        for user in removed_users:
            if not user.removed:
                new_group.remove_user(user)
        for member in groups + removed_groups:
            if not member.removed:
                new_group.add_group(member)
        for member in removed_groups:
            if not member.removed:
                new_group.remove_group(member)
        for parent in parents:
            parent.add_group(new_group)
        return new_group

    # Remote operations

    def load(self):
        """Load users, groups and memberships of every known container."""
        from admirror.loader import DirectoryLoader
        return DirectoryLoader(self).load()

    def sync(self):
        """Apply the graph to the remote directory. Returns a SyncReport."""
        from admirror.sync import Reconciler
        return Reconciler(self).sync()

    def next_uid(self) -> int:
        """Next UID free both locally and in the remote directory."""
        from admirror.allocator import IdentifierAllocator
        return IdentifierAllocator(self).next_uid()

    def next_gid(self) -> int:
        """Next GID free both locally and in the remote directory."""
        from admirror.allocator import IdentifierAllocator
        return IdentifierAllocator(self).next_gid()

    def __str__(self):
        return f"Directory [{self.root} {self.client or 'offline'}]"

    def __repr__(self):
        return f"<{self}>"
