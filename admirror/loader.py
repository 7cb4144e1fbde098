"""
Hydrates a directory's identity graph from the remote directory.

Loading is idempotent: objects already represented locally are left alone,
so it is safe to call again after adding containers of interest.
"""

from typing import List

from admirror.constants import UF_ACCOUNTDISABLE
from admirror.encoding import sid_to_rid
from admirror.errors import DirectoryError
from admirror.group import Group
from admirror.ldap_client import LDAPConnectionError, LDAPQueryError
from admirror.schema import (
    GROUP_FILTER,
    GROUP_SEARCH_ATTRIBUTES,
    INTEGER,
    USER_ATTRIBUTES,
    USER_FILTER,
    USER_SEARCH_ATTRIBUTES,
    UNIX_USER_ATTRIBUTES,
    DirectoryEntry,
)
from admirror.user import User

REMOTE_ERRORS = (LDAPConnectionError, LDAPQueryError)


class DirectoryLoader:
    """
    Reads groups, users and memberships of every known container.

    Groups are read before users because a user's primary group and UNIX
    main group must already be known to build the user. Memberships are
    attached last, for every group of the directory, so users loaded now
    also show up in groups loaded earlier.
    """

    def __init__(self, directory):
        self.directory = directory
        self.client = directory.client
        self.log = directory.logger

    def load(self):
        if self.client is None:
            raise DirectoryError(f"{self.directory.root} has no directory client to load from.")
        self.log.debug(f"[{self.directory.root}] entering load()")

        loaded_groups = self._load_groups()
        loaded_users = self._load_users()
        self._load_memberships(loaded_groups)

        # Only objects created in this call become clean. Objects loaded by a
        # previous call and modified since then stay dirty.
        for group in loaded_groups:
            group.set_loaded()
        for user in loaded_users:
            user.set_loaded()

        self.log.debug(f"[{self.directory.root}] exiting load(): "
                       f"{len(loaded_groups)} groups, {len(loaded_users)} users")

    def _search_containers(self, search_filter: str, attributes) -> List:
        results = []
        for container in self.directory.containers:
            try:
                entries = self.client.search(container.distinguished_name, search_filter,
                                             scope='level', attributes=attributes)
            except REMOTE_ERRORS as e:
                self.log.error(f"Could not search {container.distinguished_name}: {e}")
                continue
            results.extend((container, entry) for entry in entries)
        return results

    # Groups

    def _group_known(self, name: str) -> bool:
        directory = self.directory
        return bool(directory.find_group_by_name(name) or
                    directory.find_group_by_name(name, removed=True))

    def _load_groups(self) -> List[Group]:
        loaded = []
        for container, entry in self._search_containers(GROUP_FILTER, GROUP_SEARCH_ATTRIBUTES):
            name = entry.first('name') or entry.first('sAMAccountName')
            if not name:
                self.log.warning(f"Not loading group {entry.dn}: it has no name.")
                continue
            if self._group_known(name):
                self.log.debug(f"Not loading group <{name}>: already exists.")
                continue
            try:
                group = self._build_group(container, name, entry)
            except (DirectoryError, ValueError) as e:
                self.log.warning(f"Not loading group <{name}>: {e}")
                continue
            loaded.append(group)
        return loaded

    def _build_group(self, container, name: str, entry: DirectoryEntry) -> Group:
        group = Group(
            container,
            name,
            group_type=entry.first('groupType', INTEGER),
            rid=sid_to_rid(entry.first_raw('objectSid')),
            gid=entry.first('gidNumber', INTEGER),
            nis_domain=entry.first('msSFU30NisDomain'),
        )
        group.distinguished_name = entry.dn
        unix_password = entry.first('unixUserPassword')
        if group.is_unix and unix_password:
            group.unix_password = unix_password
        return group

    # Users

    def _user_known(self, username: str) -> bool:
        directory = self.directory
        return bool(directory.find_user_by_username(username) or
                    directory.find_user_by_username(username, removed=True))

    def _load_users(self) -> List[User]:
        loaded = []
        for container, entry in self._search_containers(USER_FILTER, USER_SEARCH_ATTRIBUTES):
            username = entry.first('sAMAccountName')
            if not username:
                self.log.warning(f"Not loading user {entry.dn}: it has no account name.")
                continue
            if self._user_known(username):
                self.log.debug(f"Not loading user <{username}>: already exists.")
                continue
            try:
                user = self._build_user(container, username, entry)
            except (DirectoryError, ValueError) as e:
                self.log.warning(f"Not loading user <{username}>: {e}")
                continue
            if user is not None:
                loaded.append(user)
        return loaded

    def _build_user(self, container, username: str, entry: DirectoryEntry):
        directory = self.directory
        primary_group = directory.find_group_by_rid(entry.first('primaryGroupID', INTEGER))
        if primary_group is None:
            self.log.warning(f"Windows primary group not found for {username}; not loading it.")
            return None

        unix = entry.decode(UNIX_USER_ATTRIBUTES)
        unix_args = {}
        if unix['uid'] is not None and unix['gid'] is not None:
            unix_main_group = directory.find_group_by_gid(unix['gid'])
            if unix_main_group is None:
                self.log.warning(f"UNIX main group not found for {username}; not loading it.")
                return None
            unix_args = dict(uid=unix['uid'], unix_main_group=unix_main_group,
                             shell=unix['shell'], home_directory=unix['home_directory'],
                             nis_domain=unix['nis_domain'])

        user_account_control = entry.first('userAccountControl', INTEGER, 0)
        user = User(container, username, primary_group,
                    disabled=bool(user_account_control & UF_ACCOUNTDISABLE),
                    rid=sid_to_rid(entry.first_raw('objectSid')), **unix_args)
        user.distinguished_name = entry.first('distinguishedName') or entry.dn

        fields = entry.decode(USER_ATTRIBUTES)
        local_path = fields.pop('local_path')
        local_drive = fields.pop('local_drive')
        for field, value in fields.items():
            if value is not None:
                setattr(user, field, value)
        if local_drive and local_path:
            user.connect_drive_to(local_drive, local_path)
        elif local_path:
            user.local_path = local_path

        if user.is_unix:
            for field in ('gecos', 'unix_password', 'shadow_expire', 'shadow_flag',
                          'shadow_inactive', 'shadow_last_change', 'shadow_max',
                          'shadow_min', 'shadow_warning'):
                if unix[field] is not None:
                    setattr(user, field, unix[field])

        if entry.first('pwdLastSet', INTEGER) == 0:
            user.force_change_password()
        return user

    # Memberships

    def _load_memberships(self, loaded_groups: List[Group]):
        directory = self.directory
        fresh = {group.key for group in loaded_groups}
        for group in directory.groups:
            try:
                entry = self.client.search(group.distinguished_name, GROUP_FILTER,
                                           scope='base', attributes=['member'])
            except REMOTE_ERRORS as e:
                self.log.error(f"Could not read members of {group.name}: {e}")
                continue
            if not entry:
                # Created locally and not synchronized yet.
                continue

            modified = group.modified
            for member in entry[0].text_values('member'):
                member_group = directory.find_group_by_dn(member)
                if member_group is not None and member_group is not group:
                    if member_group.key not in group._removed_group_keys:
                        group.add_group(member_group)
                member_user = directory.find_user_by_dn(member)
                if member_user is not None and member_user.primary_group is not group:
                    if member_user.key not in group._removed_user_keys:
                        group.add_user(member_user)
            if group.key not in fresh:
                group._modified = modified
