"""
Synchronizes a directory's identity graph to the remote directory.

sync() runs seven phases, each completing before the next one starts:

    1. delete removed users
    2. delete removed groups (unless still a primary or UNIX main group remotely)
    3. delete removed containers
    4. create missing containers, intermediate path segments included
    5. create new groups
    6. create new users
    7. update modified groups, then modified users

The order follows the remote directory's referential rules: a group cannot
be deleted while someone's primary group points at it, and a user cannot be
given a primary group that does not exist yet. Remote failures are logged
and recorded in the returned SyncReport; they never abort the batch.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, List

from admirror.constants import (
    CONTAINER_OBJECT_CLASSES,
    GROUP_OBJECT_CLASSES,
    OU_OBJECT_CLASSES,
    UF_ACCOUNTDISABLE,
    UF_NORMAL_ACCOUNT,
    UF_PASSWD_NOTREQD,
    USER_OBJECT_CLASSES,
    ResultCode,
)
from admirror.encoding import encode_password, random_password, sid_to_rid
from admirror.errors import DirectoryError
from admirror.ldap_client import LDAPConnectionError, LDAPQueryError, OperationResult
from admirror.remote import RemoteDirectory
from admirror.schema import (
    GROUP_FILTER,
    GROUP_SEARCH_ATTRIBUTES,
    INTEGER,
    UNIX_GROUP_ATTRIBUTES,
    UNIX_USER_ATTRIBUTES,
    USER_ATTRIBUTES,
    USER_FILTER,
    USER_SEARCH_ATTRIBUTES,
    AttributeSpec,
    DirectoryEntry,
)

REMOTE_ERRORS = (LDAPConnectionError, LDAPQueryError)
HIDDEN_ATTRIBUTES = ('unicodePwd',)


class SyncError(Exception):
    """A structural problem that prevents synchronizing a single object."""
    pass


@dataclass
class SyncFailure:
    phase: str
    target: str
    message: str


@dataclass
class SyncReport:
    """What a sync() call did, and what it could not do."""
    deleted_users: int = 0
    deleted_groups: int = 0
    deleted_containers: int = 0
    created_containers: int = 0
    created_groups: int = 0
    created_users: int = 0
    updated_groups: int = 0
    updated_users: int = 0
    skipped: List[str] = field(default_factory=list)
    failures: List[SyncFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def __str__(self):
        return (f"deleted {self.deleted_users} users, {self.deleted_groups} groups, "
                f"{self.deleted_containers} containers; created {self.created_containers} "
                f"containers, {self.created_groups} groups, {self.created_users} users; "
                f"updated {self.updated_groups} groups, {self.updated_users} users; "
                f"{len(self.failures)} failures")


def display_name(user) -> str:
    """Build the description and displayName of a user from the naming fields."""
    parts = []
    if user.first_name:
        parts.append(user.first_name)
    if user.initials:
        parts.append(f"{user.initials}.")
    if user.surname:
        parts.append(user.surname)
    return ' '.join(parts) or user.username


def _differs(attr: AttributeSpec, remote: Any, local: Any) -> bool:
    return attr.codec.encode(remote) != attr.codec.encode(local)


def _printable(operations) -> List:
    return [(op, name, '****' if name in HIDDEN_ATTRIBUTES else value)
            for op, name, value in operations]


def _contains(values: List[str], dn: str) -> bool:
    dn = dn.lower()
    return any(value.lower() == dn for value in values)


class Reconciler:
    """Computes and applies the changeset of one directory."""

    def __init__(self, directory):
        self.directory = directory
        self.client = directory.client
        self.remote = RemoteDirectory(directory)
        self.log = directory.logger
        self.report = SyncReport()

    def sync(self) -> SyncReport:
        if self.client is None:
            raise DirectoryError(f"{self.directory.root} has no directory client to sync with.")
        directory = self.directory
        self.report = SyncReport()
        self.log.debug(f"[{directory.root}] entering sync()")

        for user in directory.removed_users:
            self._guard('delete_user', user.username, self.delete_user, user)
        for group in directory.removed_groups:
            self._guard('delete_group', group.name, self.delete_group, group)
        for container in directory.removed_containers:
            self._guard('delete_container', container.name, self.delete_container, container)
        for container in directory.containers:
            self._guard('create_container', container.name, self.create_container, container)
        for group in directory.groups:
            self._guard('create_group', group.name, self.create_group, group)
        for user in directory.users:
            self._guard('create_user', user.username, self.create_user, user)
        for group in directory.groups:
            self._guard('update_group', group.name, self.update_group, group)
        for user in directory.users:
            self._guard('update_user', user.username, self.update_user, user)

        self.log.debug(f"[{directory.root}] exiting sync(): {self.report}")
        return self.report

    def _guard(self, phase: str, target: str, func: Callable, *args):
        try:
            return func(*args)
        except SyncError as e:
            self.log.error(f"SYNC ERROR in {phase} <{target}>: {e}")
            self.report.failures.append(SyncFailure(phase, target, str(e)))
        except REMOTE_ERRORS as e:
            self.log.error(f"Directory error in {phase} <{target}>: {e}")
            self.report.failures.append(SyncFailure(phase, target, str(e)))
        return None

    def _check(self, result: OperationResult, phase: str, target: str) -> bool:
        if not result.ok:
            self.log.warning(f"LDAP ERROR in {phase} <{target}>: {result}")
            self.report.failures.append(SyncFailure(phase, target, str(result)))
        return result.ok

    def _modify(self, dn: str, operations: List, phase: str, target: str) -> bool:
        self.log.debug(f"\tmodify {dn}: {_printable(operations)}")
        return self._check(self.client.modify(dn, operations), phase, target)

    def _fetch_rid(self, dn: str, search_filter: str) -> int:
        entry = self.remote.fetch(dn, search_filter, ['objectSid'])
        if entry is None or not entry.has('objectSid'):
            raise SyncError(f"{dn} has no objectSid in the remote directory")
        return sid_to_rid(entry.first_raw('objectSid'))

    # Phases 1 to 3: deletions

    def delete_user(self, user):
        self.log.debug(f"[{self.directory.root}] delete_user(<{user.username}>)")
        result = self.client.delete(user.distinguished_name)
        if result.ok or result.code == ResultCode.NO_SUCH_OBJECT:
            user.container.destroy_user(user)
            self.report.deleted_users += 1
            self.log.debug(f"\tDestroyed user <{user.username}>.")
        else:
            self._check(result, 'delete_user', user.username)

    def delete_group(self, group):
        self.log.debug(f"[{self.directory.root}] delete_group(<{group.name}>)")
        reasons = []
        for user in self.directory.removed_users:
            if user.primary_group is group or user.unix_main_group is group:
                reasons.append(f"user <{user.username}> still uses it and was not deleted")
                break
        if self.remote.is_primary_group(group):
            reasons.append("it is the primary Windows group of a remote user")
        if self.remote.is_unix_main_group(group):
            reasons.append("it is the UNIX main group of a remote user")
        if reasons:
            message = f"Cannot delete group <{group.name}>: {' and '.join(reasons)}."
            if group.container.removed:
                message += f" Container {group.container.name} cannot be removed either."
            self.log.warning(message)
            self.report.skipped.append(message)
            return

        result = self.client.delete(group.distinguished_name)
        if result.ok or result.code == ResultCode.NO_SUCH_OBJECT:
            group.container.destroy_group(group)
            self.report.deleted_groups += 1
            self.log.debug(f"\tDestroyed group <{group.name}>.")
        else:
            self._check(result, 'delete_group', group.name)

    def delete_container(self, container):
        self.log.debug(f"[{self.directory.root}] delete_container(<{container.name}>)")
        leftovers = container.removed_users + container.removed_groups
        if leftovers:
            message = (f"Cannot delete container {container.name}: "
                       f"{len(leftovers)} objects could not be deleted from it.")
            self.log.warning(message)
            self.report.skipped.append(message)
            return
        nested = self.directory._nested_containers(container)
        if nested:
            message = (f"Cannot delete container {container.name}: it contains "
                       f"{', '.join(current.name for current in nested)}.")
            self.log.warning(message)
            self.report.skipped.append(message)
            return

        result = self.client.delete(container.distinguished_name)
        if result.ok or result.code == ResultCode.NO_SUCH_OBJECT:
            self.directory.destroy_container(container)
            self.report.deleted_containers += 1
        else:
            self._check(result, 'delete_container', container.name)

    # Phases 4 to 6: creations

    def create_container(self, container):
        self.log.debug(f"[{self.directory.root}] create_container(<{container.name}>)")
        dn = self.directory.root
        for segment in reversed(container.name.split(',')):
            dn = f"{segment},{dn}"
            kind, _, value = segment.partition('=')
            kind = kind.lower()
            if kind == 'ou':
                object_class, attributes = OU_OBJECT_CLASSES, {'ou': value}
            elif kind == 'cn':
                object_class, attributes = CONTAINER_OBJECT_CLASSES, {'cn': value}
            else:
                raise SyncError(f"{container.name} ({segment}): unknown container type")

            if self.remote.fetch(dn, f'(objectClass={object_class[-1]})') is not None:
                self.log.debug(f"\t{dn} found - not creating.")
                continue
            self.log.debug(f"\t{dn} not found - creating.")
            if self._check(self.client.add(dn, object_class, attributes),
                           'create_container', container.name):
                self.report.created_containers += 1

    def create_group(self, group):
        if group.loaded:
            return
        dn = group.distinguished_name
        if self.remote.fetch(dn, GROUP_FILTER) is None:
            self.log.debug(f"[{self.directory.root}] create_group(<{group.name}>)")
            attributes = {
                'groupType': group.group_type,
                'sAMAccountName': group.name,
            }
            if group.is_unix:
                attributes.update({
                    'gidNumber': group.gid,
                    'msSFU30Name': group.name,
                    'msSFU30NisDomain': group.nis_domain,
                    'unixUserPassword': group.unix_password,
                    'description': f"UNIX group {group.name}",
                })
            else:
                attributes['description'] = f"Group {group.name}"
            self.log.debug(f"\tadd {dn}: {attributes}")
            if not self._check(self.client.add(dn, GROUP_OBJECT_CLASSES, attributes),
                               'create_group', group.name):
                return
            self.report.created_groups += 1
        group.set_rid(self._fetch_rid(dn, GROUP_FILTER))

    def create_user(self, user):
        if user.loaded:
            return
        dn = user.distinguished_name
        if self.remote.fetch(dn, USER_FILTER) is not None:
            user.set_rid(self._fetch_rid(dn, USER_FILTER))
            return

        self.log.debug(f"[{self.directory.root}] create_user(<{user.username}>)")
        primary_group = user.primary_group
        rid = primary_group.rid
        if rid is None:
            raise SyncError(f"RID of <{primary_group.name}> is not known")

        if not self._check(self.client.add(dn, USER_OBJECT_CLASSES, self._new_user_attributes(user)),
                           'create_user', user.username):
            return
        self.report.created_users += 1

        status = UF_NORMAL_ACCOUNT | (UF_ACCOUNTDISABLE if user.disabled else 0)
        if user.password is None:
            user.password = random_password()
            self.log.debug(f"\tGenerated a password for <{user.username}>.")
        complete = self._modify(dn, [
            ('replace', 'unicodePwd', encode_password(user.password)),
            ('replace', 'userAccountControl', status),
        ], 'create_user', user.username)
        if complete:
            user.password = None

        if user.must_change_password:
            complete &= self._modify(dn, [('replace', 'pwdLastSet', 0)],
                                     'create_user', user.username)

        if primary_group.name.lower() != self.directory.default_group_name.lower():
            # The directory refuses primaryGroupID values of groups the
            # account is not a member of.
            complete &= self._modify(primary_group.distinguished_name, [('add', 'member', dn)],
                                     'create_user', user.username)
            complete &= self._modify(dn, [('replace', 'primaryGroupID', rid)],
                                     'create_user', user.username)
            default_group = self.directory.default_group
            if default_group is not None and default_group is not primary_group:
                default_group.add_user(user)

        user.set_rid(self._fetch_rid(dn, USER_FILTER))
        if complete:
            user.set_loaded()
        else:
            user._setup_pending = True
            self.log.warning(f"User <{user.username}> was created but not fully set up; "
                             f"leaving it for update.")

    def _new_user_attributes(self, user) -> dict:
        description = display_name(user)
        attributes = {
            'sAMAccountName': user.username,
            'userAccountControl': UF_NORMAL_ACCOUNT | UF_PASSWD_NOTREQD | UF_ACCOUNTDISABLE,
            'givenName': user.first_name,
            'initials': user.initials,
            'middleName': user.middle_name,
            'sn': user.surname,
            'displayName': description,
            'description': description,
            'userPrincipalName': f"{user.username}@{self.directory.domain}",
            'scriptPath': user.script_path,
            'profilePath': user.profile_path,
            'homeDirectory': user.local_path,
            'homeDrive': user.local_drive if user.local_path else None,
        }
        if user.is_unix:
            attributes['msSFU30Name'] = user.username
            for attr in UNIX_USER_ATTRIBUTES:
                attributes[attr.remote] = attr.codec.encode(getattr(user, attr.field))
        return attributes

    # Phase 7: updates

    def update_group(self, group):
        if not group.modified:
            return
        self.log.debug(f"[{self.directory.root}] update_group(<{group.name}>)")
        dn = group.distinguished_name
        entry = self.remote.fetch(dn, GROUP_FILTER, GROUP_SEARCH_ATTRIBUTES)
        if entry is None:
            self.log.warning(f"Group <{group.name}> is not in the remote directory; not updating it.")
            return

        operations = []
        if group.is_unix:
            for attr in UNIX_GROUP_ATTRIBUTES:
                remote = entry.first(attr.remote, attr.codec)
                local = getattr(group, attr.field)
                self.log.debug(f"\t{attr.field}: {remote} =? {local}")
                if _differs(attr, remote, local):
                    operations.append(('replace', attr.remote, attr.codec.encode(local)))

        operations += self._member_removals(group, entry)
        operations += self._member_additions(group, entry)

        if operations and not self._modify(dn, operations, 'update_group', group.name):
            return
        if operations:
            self.report.updated_groups += 1
        else:
            self.log.debug(f"\tNo need to update group <{group.name}>.")
        group._clear_staged_removals()
        group.set_loaded()

    def _member_removals(self, group, entry: DirectoryEntry) -> List:
        directory = self.directory
        posix_members = entry.text_values('msSFU30PosixMember')
        operations = []
        for member in entry.text_values('member'):
            removed_group = directory.find_group_by_dn(member, removed=True)
            removed_user = directory.find_user_by_dn(member, removed=True)
            staged_group = directory.find_group_by_dn(member)
            if staged_group is not None and staged_group.key not in group._removed_group_keys:
                staged_group = None
            staged_user = directory.find_user_by_dn(member)
            if staged_user is not None and staged_user.key not in group._removed_user_keys:
                staged_user = None
            if not (removed_group or removed_user or staged_group or staged_user):
                continue

            operations.append(('delete', 'member', member))
            user = removed_user or staged_user
            if (user is not None and user.is_unix and group.is_unix
                    and group is not user.primary_group and _contains(posix_members, member)):
                operations.append(('delete', 'memberUid', user.username))
                operations.append(('delete', 'msSFU30PosixMember', member))
        return operations

    def _member_additions(self, group, entry: DirectoryEntry) -> List:
        members = entry.text_values('member')
        posix_members = entry.text_values('msSFU30PosixMember')
        operations = []
        for user in group.users:
            dn = user.distinguished_name
            remote_user = self.remote.fetch(dn, USER_FILTER, ['primaryGroupID'])
            if remote_user is None:
                self.log.warning(f"User <{user.username}> is not in the remote directory; "
                                 f"not adding it to <{group.name}>.")
                continue
            if (not _contains(members, dn)
                    and remote_user.first('primaryGroupID', INTEGER) != group.rid):
                operations.append(('add', 'member', dn))
            if (user.is_unix and group.is_unix and group is not user.unix_main_group
                    and not _contains(posix_members, dn)):
                operations.append(('add', 'memberUid', user.username))
                operations.append(('add', 'msSFU30PosixMember', dn))

        for member in group.groups:
            if not _contains(members, member.distinguished_name):
                operations.append(('add', 'member', member.distinguished_name))
        return operations

    def update_user(self, user):
        if not user.modified:
            return
        self.log.debug(f"[{self.directory.root}] update_user(<{user.username}>)")
        dn = user.distinguished_name
        entry = self.remote.fetch(dn, USER_FILTER, USER_SEARCH_ATTRIBUTES)
        if entry is None:
            self.log.warning(f"User <{user.username}> is not in the remote directory; not updating it.")
            return

        operations = []
        user_account_control = entry.first('userAccountControl', INTEGER, UF_NORMAL_ACCOUNT)
        if (not user._setup_pending
                and bool(user_account_control & UF_ACCOUNTDISABLE) != user.disabled):
            status = user_account_control & ~UF_ACCOUNTDISABLE
            if user.disabled:
                status |= UF_ACCOUNTDISABLE
            operations.append(('replace', 'userAccountControl', status))

        table = USER_ATTRIBUTES + (UNIX_USER_ATTRIBUTES if user.is_unix else ())
        old_gid = None
        for attr in table:
            remote = entry.first(attr.remote, attr.codec)
            local = getattr(user, attr.field)
            self.log.debug(f"\t{attr.field}: {remote} =? {local}")
            if _differs(attr, remote, local):
                if attr.field == 'gid':
                    old_gid = remote
                operations.append(('replace', attr.remote, attr.codec.encode(local)))

        primary_group = user.primary_group
        if entry.first('primaryGroupID', INTEGER) != primary_group.rid:
            if primary_group.rid is None:
                raise SyncError(f"RID of <{primary_group.name}> is not known")
            group_entry = self.remote.fetch(primary_group.distinguished_name, GROUP_FILTER,
                                            ['member'])
            if group_entry is None or not group_entry.contains_dn('member', dn):
                self._modify(primary_group.distinguished_name, [('add', 'member', dn)],
                             'update_user', user.username)
            operations.append(('replace', 'primaryGroupID', primary_group.rid))

        if (entry.first('pwdLastSet', INTEGER) == 0) != user.must_change_password:
            operations.append(('replace', 'pwdLastSet', 0 if user.must_change_password else -1))

        description = display_name(user)
        if description != entry.first('description'):
            operations.append(('replace', 'description', description))
        if description != entry.first('displayName'):
            operations.append(('replace', 'displayName', description))

        if user.password is not None:
            operations.append(('replace', 'unicodePwd', encode_password(user.password)))

        if user._setup_pending:
            status = UF_NORMAL_ACCOUNT | (UF_ACCOUNTDISABLE if user.disabled else 0)
            if status != user_account_control:
                operations.append(('replace', 'userAccountControl', status))

        if old_gid is not None:
            self._move_unix_main_group(user, old_gid)

        if operations and not self._modify(dn, operations, 'update_user', user.username):
            return
        if operations:
            self.report.updated_users += 1
        else:
            self.log.debug(f"\tNo need to update user <{user.username}>.")
        user.password = None
        user._setup_pending = False
        user.set_loaded()

    def _move_unix_main_group(self, user, old_gid: int):
        """
        Fix POSIX membership after a UNIX main group change: the old main
        group gains explicit POSIX membership, the new one loses it.
        """
        dn = user.distinguished_name
        old_group = self.directory.find_group_by_gid(old_gid)
        if old_group is not None and old_group.key in user._group_keys:
            entry = self.remote.fetch(old_group.distinguished_name, GROUP_FILTER,
                                      ['msSFU30PosixMember'])
            if entry is not None and not entry.contains_dn('msSFU30PosixMember', dn):
                self.log.debug(f"\tAdding UNIX membership in old main group <{old_group.name}>.")
                self._modify(old_group.distinguished_name, [
                    ('add', 'memberUid', user.username),
                    ('add', 'msSFU30PosixMember', dn),
                ], 'update_user', user.username)

        new_group = user.unix_main_group
        entry = self.remote.fetch(new_group.distinguished_name, GROUP_FILTER,
                                  ['msSFU30PosixMember'])
        if entry is not None and entry.contains_dn('msSFU30PosixMember', dn):
            self.log.debug(f"\tRemoving UNIX membership in new main group <{new_group.name}>.")
            self._modify(new_group.distinguished_name, [
                ('delete', 'memberUid', user.username),
                ('delete', 'msSFU30PosixMember', dn),
            ], 'update_user', user.username)
