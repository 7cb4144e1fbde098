"""
Exceptions raised by the identity graph.

Every error is raised before the graph is changed, so callers can recover
by handling it at the call site.
"""


class DirectoryError(ValueError):
    """Base exception for identity graph invariant violations."""
    pass


class DuplicateIdentifierError(DirectoryError):
    """Raised when a RID, UID or GID is already in use in the directory."""
    pass


class DuplicateNameError(DirectoryError):
    """Raised when a username or group name is already in use."""
    pass


class DuplicateContainerError(DuplicateNameError):
    """Raised when a container with the same name already exists."""
    pass


class GroupTypeError(DirectoryError):
    """Raised for an invalid group type or a group unfit as primary group."""
    pass


class CrossDirectoryError(DirectoryError):
    """Raised when objects from two different directories are linked."""
    pass


class MembershipError(DirectoryError):
    """Raised for membership changes the directory would refuse."""
    pass


class GroupInUseError(DirectoryError):
    """Raised when removing a group that is a primary or UNIX main group."""
    pass


class RemovedEntityError(DirectoryError):
    """Raised when operating on a removed or destroyed object."""
    pass


class ContainerError(DirectoryError):
    """Raised for invalid container names and protected containers."""
    pass


class NotUnixError(DirectoryError):
    """Raised when a UNIX-only attribute is used on a Windows-only object."""
    pass
