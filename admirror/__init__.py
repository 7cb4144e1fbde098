"""
AD Mirror - Keep an in-memory mirror of an Active Directory identity graph.

This package models users, groups and containers (with their UNIX extensions)
as a consistent object graph, loads that graph from a live directory and
synchronizes local changes back through an ordered changeset.
"""

from admirror.constants import (
    GROUP_DOMAIN_LOCAL_SECURITY,
    GROUP_DOMAIN_LOCAL_DISTRIBUTION,
    GROUP_GLOBAL_SECURITY,
    GROUP_GLOBAL_DISTRIBUTION,
    GROUP_UNIVERSAL_SECURITY,
    GROUP_UNIVERSAL_DISTRIBUTION,
    EntityState,
    LogLevel,
)
from admirror.container import Container
from admirror.directory import Directory
from admirror.group import Group, UNIXGroup
from admirror.user import User, UNIXUser

__version__ = "1.0.0"
__author__ = "AD Mirror Team"

__all__ = [
    'Container',
    'Directory',
    'EntityState',
    'Group',
    'LogLevel',
    'UNIXGroup',
    'UNIXUser',
    'User',
    'GROUP_DOMAIN_LOCAL_SECURITY',
    'GROUP_DOMAIN_LOCAL_DISTRIBUTION',
    'GROUP_GLOBAL_SECURITY',
    'GROUP_GLOBAL_DISTRIBUTION',
    'GROUP_UNIVERSAL_SECURITY',
    'GROUP_UNIVERSAL_DISTRIBUTION',
]
