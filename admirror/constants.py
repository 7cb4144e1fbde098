"""
Constants shared by the identity graph, the loader and the reconciler.

Group type values are the signed 32-bit integers Active Directory stores in
the groupType attribute. Account control bits come from lmaccess.h.
"""

from enum import Enum, IntEnum

# groupType values
GROUP_DOMAIN_LOCAL_SECURITY = -2147483644
GROUP_DOMAIN_LOCAL_DISTRIBUTION = 0x4
GROUP_GLOBAL_SECURITY = -2147483646
GROUP_GLOBAL_DISTRIBUTION = 0x2
GROUP_UNIVERSAL_SECURITY = -2147483640
GROUP_UNIVERSAL_DISTRIBUTION = 0x8

GROUP_TYPE_NAMES = {
    GROUP_DOMAIN_LOCAL_SECURITY: 'GROUP_DOMAIN_LOCAL_SECURITY',
    GROUP_DOMAIN_LOCAL_DISTRIBUTION: 'GROUP_DOMAIN_LOCAL_DISTRIBUTION',
    GROUP_GLOBAL_SECURITY: 'GROUP_GLOBAL_SECURITY',
    GROUP_GLOBAL_DISTRIBUTION: 'GROUP_GLOBAL_DISTRIBUTION',
    GROUP_UNIVERSAL_SECURITY: 'GROUP_UNIVERSAL_SECURITY',
    GROUP_UNIVERSAL_DISTRIBUTION: 'GROUP_UNIVERSAL_DISTRIBUTION',
}

# Only these may be used as a user's primary Windows group.
PRIMARY_GROUP_TYPES = (GROUP_GLOBAL_SECURITY, GROUP_UNIVERSAL_SECURITY)

# userAccountControl bits
UF_ACCOUNTDISABLE = 0x0002
UF_PASSWD_NOTREQD = 0x0020
UF_PASSWD_CANT_CHANGE = 0x0040
UF_NORMAL_ACCOUNT = 0x0200

# Defaults
DEFAULT_CONTAINER = 'cn=Users'
DEFAULT_GROUP = 'Domain Users'
DEFAULT_BIND_USER = 'cn=Administrator,cn=Users'
DEFAULT_SERVER = 'localhost'
DEFAULT_PORT = 636
DEFAULT_NIS_DOMAIN = 'admirror'
DEFAULT_MIN_UID = 1000
DEFAULT_MIN_GID = 1000
DEFAULT_UNIX_PASSWORD = '*'

# Object classes
USER_OBJECT_CLASSES = ['top', 'person', 'organizationalPerson', 'user']
GROUP_OBJECT_CLASSES = ['top', 'group']
OU_OBJECT_CLASSES = ['top', 'organizationalUnit']
CONTAINER_OBJECT_CLASSES = ['top', 'container']


class ResultCode(IntEnum):
    """LDAP result codes the engine reacts to."""
    SUCCESS = 0
    NO_SUCH_OBJECT = 32
    UNWILLING_TO_PERFORM = 53
    ENTRY_ALREADY_EXISTS = 68


class LogLevel(IntEnum):
    """Verbosity of a directory's logger."""
    NONE = 0
    NORMAL = 1
    DEBUG = 2


class EntityState(Enum):
    """Lifecycle of a container, user or group in the graph."""
    ACTIVE = 'active'
    PENDING_REMOVAL = 'pending_removal'
    DESTROYED = 'destroyed'
