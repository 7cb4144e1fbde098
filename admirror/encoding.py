"""
Encoding helpers for Active Directory specific values.

Covers relative identifier extraction from objectSid values, the quoted
UTF-16LE format required by unicodePwd, random password generation and
group type names.
"""

import re
import secrets
import string
import struct
from typing import Union

from admirror.constants import GROUP_TYPE_NAMES

_SYMBOLS = '!"#$%&\'()*+,-./:;<=>?@[\\]^_`{|}~'


def sid_to_rid(sid: Union[bytes, str]) -> int:
    """
    Extract the relative identifier from a security identifier.

    The binary layout is revision (1 byte), sub-authority count (1 byte),
    identifier authority (6 bytes) followed by little-endian 32-bit
    sub-authorities; the RID is the last of them. The textual
    "S-1-5-21-...-1105" form is accepted as well.

    Args:
        sid: objectSid value as raw bytes or string

    Returns:
        The relative identifier

    Raises:
        ValueError: If the value is not a security identifier
    """
    if isinstance(sid, str):
        if not re.match(r'^S-\d+(-\d+)+$', sid, re.IGNORECASE):
            raise ValueError(f"Not a security identifier: {sid!r}")
        return int(sid.rsplit('-', 1)[1])

    if not isinstance(sid, (bytes, bytearray)):
        raise ValueError(f"Not a security identifier: {sid!r}")
    if len(sid) < 12 or (len(sid) - 8) % 4 != 0:
        raise ValueError(f"Invalid binary security identifier length: {len(sid)}")
    count = (len(sid) - 8) // 4
    return struct.unpack(f'<{count}I', sid[8:])[-1]


def encode_password(password: str) -> bytes:
    """Encode a password the way unicodePwd expects it: quoted UTF-16LE."""
    return f'"{password}"'.encode('utf-16-le')


def random_password() -> str:
    """
    Generate an eight character password that satisfies the default domain
    complexity policy.
    """
    pick = secrets.choice
    return ''.join([
        pick(string.ascii_lowercase),
        pick(string.digits),
        pick(string.ascii_lowercase),
        pick(string.ascii_uppercase),
        pick(_SYMBOLS),
        pick(string.digits),
        pick(string.ascii_uppercase),
        pick(_SYMBOLS),
    ])


def group_type_to_str(group_type: int) -> str:
    return GROUP_TYPE_NAMES.get(group_type, 'UNKNOWN')


def group_type_is_security(group_type: int) -> bool:
    # Security groups carry the sign bit.
    return group_type < 0


def domain_from_root(root: str) -> str:
    """Turn "dc=example,dc=com" into "example.com"."""
    return re.sub(r'dc=', '', root, flags=re.IGNORECASE).replace(',', '.').lower()
