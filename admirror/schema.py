"""
Remote schema description: attribute tables and directory entries.

Each entity kind has a fixed table of (remote attribute, local field, codec)
triples. The loader decodes entries through these tables and the reconciler
diffs objects against remote entries with the same tables, so an attribute
that does not apply to a kind is simply absent from that kind's table.
"""

from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Union

from ldap3.utils.ciDict import CaseInsensitiveDict

USER_FILTER = '(objectClass=user)'
GROUP_FILTER = '(objectClass=group)'

AttributeValue = Union[str, bytes]


class Codec:
    """Converts between remote attribute strings and local field values."""

    name = 'text'

    def decode(self, value: AttributeValue) -> Any:
        if isinstance(value, bytes):
            return value.decode('utf-8')
        return value

    def encode(self, value: Any) -> Optional[str]:
        if value is None or value == '':
            return None
        return str(value)


class IntegerCodec(Codec):

    name = 'integer'

    def decode(self, value: AttributeValue) -> int:
        return int(super().decode(value))


TEXT = Codec()
INTEGER = IntegerCodec()


class AttributeSpec(NamedTuple):
    remote: str
    field: str
    codec: Codec = TEXT


USER_ATTRIBUTES = (
    AttributeSpec('givenName', 'first_name'),
    AttributeSpec('initials', 'initials'),
    AttributeSpec('middleName', 'middle_name'),
    AttributeSpec('sn', 'surname'),
    AttributeSpec('scriptPath', 'script_path'),
    AttributeSpec('profilePath', 'profile_path'),
    AttributeSpec('homeDirectory', 'local_path'),
    AttributeSpec('homeDrive', 'local_drive'),
)

UNIX_USER_ATTRIBUTES = (
    AttributeSpec('uidNumber', 'uid', INTEGER),
    AttributeSpec('gidNumber', 'gid', INTEGER),
    AttributeSpec('loginShell', 'shell'),
    AttributeSpec('unixHomeDirectory', 'home_directory'),
    AttributeSpec('msSFU30NisDomain', 'nis_domain'),
    AttributeSpec('gecos', 'gecos'),
    AttributeSpec('unixUserPassword', 'unix_password'),
    AttributeSpec('shadowExpire', 'shadow_expire', INTEGER),
    AttributeSpec('shadowFlag', 'shadow_flag', INTEGER),
    AttributeSpec('shadowInactive', 'shadow_inactive', INTEGER),
    AttributeSpec('shadowLastChange', 'shadow_last_change', INTEGER),
    AttributeSpec('shadowMax', 'shadow_max', INTEGER),
    AttributeSpec('shadowMin', 'shadow_min', INTEGER),
    AttributeSpec('shadowWarning', 'shadow_warning', INTEGER),
)

GROUP_ATTRIBUTES = ()

UNIX_GROUP_ATTRIBUTES = (
    AttributeSpec('msSFU30NisDomain', 'nis_domain'),
    AttributeSpec('unixUserPassword', 'unix_password'),
)

# Attributes cleared when an object loses its UNIX variant.
UNIX_USER_CLEARED_ATTRIBUTES = [
    attr.remote for attr in UNIX_USER_ATTRIBUTES
]
UNIX_GROUP_CLEARED_ATTRIBUTES = [
    'msSFU30NisDomain', 'unixUserPassword', 'memberUid', 'msSFU30PosixMember'
]

USER_SEARCH_ATTRIBUTES = [
    'sAMAccountName', 'distinguishedName', 'objectSid', 'primaryGroupID',
    'userAccountControl', 'pwdLastSet', 'description', 'displayName',
] + [attr.remote for attr in USER_ATTRIBUTES + UNIX_USER_ATTRIBUTES]

GROUP_SEARCH_ATTRIBUTES = [
    'name', 'sAMAccountName', 'distinguishedName', 'objectSid', 'groupType',
    'gidNumber', 'member', 'memberUid', 'msSFU30PosixMember',
] + [attr.remote for attr in UNIX_GROUP_ATTRIBUTES]


class DirectoryEntry:
    """
    A single entry returned by a directory search.

    Attributes are multi-valued and may be absent, so they are probed through
    the accessors rather than indexed.
    """

    def __init__(self, dn: str, attributes: Optional[Dict[str, Iterable[AttributeValue]]] = None):
        self.dn = dn
        self.attributes = CaseInsensitiveDict()
        for name, values in (attributes or {}).items():
            if isinstance(values, (str, bytes)):
                values = [values]
            self.attributes[name] = list(values)

    def has(self, name: str) -> bool:
        return bool(self.attributes.get(name))

    def values(self, name: str) -> List[AttributeValue]:
        return list(self.attributes.get(name) or [])

    def text_values(self, name: str) -> List[str]:
        return [TEXT.decode(value) for value in self.values(name)]

    def first(self, name: str, codec: Codec = TEXT, default: Any = None) -> Any:
        values = self.values(name)
        if not values:
            return default
        return codec.decode(values[-1])

    def first_raw(self, name: str) -> Optional[AttributeValue]:
        values = self.values(name)
        return values[-1] if values else None

    def contains_dn(self, name: str, dn: str) -> bool:
        """Case-insensitive membership test for DN valued attributes."""
        wanted = dn.lower()
        return any(value.lower() == wanted for value in self.text_values(name))

    def decode(self, table: Iterable[AttributeSpec]) -> Dict[str, Any]:
        """Decode every attribute of a table, absent ones as None."""
        return {attr.field: self.first(attr.remote, attr.codec) for attr in table}

    def __repr__(self):
        return f"DirectoryEntry({self.dn!r})"
