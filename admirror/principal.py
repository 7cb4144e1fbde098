"""
State shared by users and groups.

Users and groups live in their directory's arena and refer to their container
and to each other by integer key. The accessors on this class resolve those
keys back to objects through the owning directory.
"""

from typing import Optional

from admirror.constants import EntityState
from admirror.errors import CrossDirectoryError, DirectoryError, RemovedEntityError


class Principal:
    """Base class for security principals (users and groups)."""

    def __init__(self, container, rid: Optional[int] = None):
        if container.removed:
            raise RemovedEntityError(f"{container} has been removed.")
        self._directory = container.directory
        self._container_key = container.key
        self._rid = rid
        self._distinguished_name = None
        self.key = None
        self.state = EntityState.ACTIVE
        self._loaded = False
        self._modified = True

    @property
    def directory(self):
        return self._directory

    @property
    def container(self):
        return self._directory._resolve(self._container_key)

    @property
    def rid(self) -> Optional[int]:
        return self._rid

    def set_rid(self, rid: int):
        """Record the RID assigned by the directory. Only the first one sticks."""
        if self._rid is None:
            self._rid = rid
            self._directory.rids.add(rid)

    @property
    def removed(self) -> bool:
        return self.state is not EntityState.ACTIVE

    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def modified(self) -> bool:
        return self._modified

    def set_loaded(self):
        """Mark the object as matching the remote directory."""
        self._loaded = True
        self._modified = False

    @property
    def distinguished_name(self) -> str:
        if self._distinguished_name:
            return self._distinguished_name
        return f"cn={self._rdn_value()},{self.container.name},{self._directory.root}"

    @distinguished_name.setter
    def distinguished_name(self, distinguished_name: str):
        if self._loaded:
            raise DirectoryError(
                "The distinguished name can only be set on objects not yet loaded."
            )
        self._distinguished_name = distinguished_name

    def _rdn_value(self) -> str:
        raise NotImplementedError

    def _require_active(self):
        if self.state is EntityState.DESTROYED:
            raise RemovedEntityError(f"{self} has been destroyed.")

    def _check_same_directory(self, other, what: str):
        if other.directory is not self._directory:
            raise CrossDirectoryError(f"{what} must be in the same directory.")
