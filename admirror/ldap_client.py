"""
LDAP client for the remote directory.

DirectoryClient wraps an ldap3 connection behind the small interface the
loader, the reconciler and the identifier allocator need: base/level/subtree
searches returning DirectoryEntry objects, paged subtree scans, and add,
modify and delete operations that report the LDAP result code instead of
raising.
"""

import logging
import ssl
from typing import Any, Dict, Iterable, Iterator, List, NamedTuple, Optional, Sequence, Tuple

from ldap3 import (
    BASE,
    LEVEL,
    MODIFY_ADD,
    MODIFY_DELETE,
    MODIFY_REPLACE,
    NONE,
    SUBTREE,
    Connection,
    Server,
    Tls,
)
from ldap3.core.exceptions import LDAPBindError, LDAPException

from admirror.constants import DEFAULT_BIND_USER, DEFAULT_PORT, DEFAULT_SERVER, ResultCode
from admirror.retry import (
    RETRYABLE_RESULT_CODES,
    TRANSIENT_ERRORS,
    MaxRetriesExceeded,
    RetryableError,
    create_retry_callback,
    is_retryable_error,
    retry_call,
)
from admirror.schema import DirectoryEntry

logger = logging.getLogger(__name__)

SCOPES = {
    'base': BASE,
    'level': LEVEL,
    'subtree': SUBTREE,
}

MODIFY_OPERATIONS = {
    'add': MODIFY_ADD,
    'delete': MODIFY_DELETE,
    'replace': MODIFY_REPLACE,
}

# An ordered modify operation: ('add' | 'delete' | 'replace', attribute, value).
# A value of None means "no values": replace clears the attribute, delete
# removes every value.
Operation = Tuple[str, str, Any]


class LDAPConnectionError(Exception):
    """Raised when LDAP connection fails."""
    pass


class LDAPQueryError(Exception):
    """Raised when an LDAP operation cannot be carried out."""
    pass


class ServerBusyError(RetryableError):
    """A write refused with a busy or unavailable result code."""

    def __init__(self, outcome):
        self.outcome = outcome
        super().__init__(str(outcome))


class OperationResult(NamedTuple):
    """Outcome of a write operation."""
    code: int
    description: str = 'success'
    message: str = ''

    @property
    def ok(self) -> bool:
        return self.code == ResultCode.SUCCESS

    def __str__(self):
        text = f"{self.code} {self.description}"
        return f"{text}: {self.message}" if self.message else text


def _values(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        return [_value(item) for item in value]
    return [_value(value)]


def _value(value: Any) -> Any:
    if isinstance(value, (bytes, str)):
        return value
    return str(value)


def build_changes(operations: Iterable[Operation]) -> Dict[str, List[Tuple[int, List[Any]]]]:
    """
    Translate ordered operations into an ldap3 change dictionary.

    Operations on the same attribute keep their relative order.
    """
    changes: Dict[str, List[Tuple[int, List[Any]]]] = {}
    for operation, attribute, value in operations:
        try:
            kind = MODIFY_OPERATIONS[operation]
        except KeyError:
            raise LDAPQueryError(f"Unknown modify operation: {operation}")
        changes.setdefault(attribute, []).append((kind, _values(value)))
    return changes


class DirectoryClient:
    """
    ldap3 backed client of one Active Directory domain.

    The connection is opened lazily on first use. Binds and searches are
    retried on transient network failures, writes while the server answers
    busy or unavailable; ``error_handling.max_retries`` counts the attempts
    after the first one. Paged scans are not retried.
    """

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize the client with configuration.

        Args:
            config: The ``directory`` configuration section, optionally with
                the ``error_handling`` section nested under 'error_handling'
        """
        self.config = config
        self.root = config['root']
        self.server_name = config.get('server', DEFAULT_SERVER)
        self.port = config.get('port', DEFAULT_PORT)
        self.bind_user = config.get('bind_user', DEFAULT_BIND_USER)
        self.bind_password = config.get('bind_password')
        self.use_ssl = config.get('use_ssl', True)
        self.verify_ssl = config.get('verify_ssl', True)
        self.ca_cert_file = config.get('ca_cert_file')
        self.connection_timeout = config.get('connection_timeout', 10)
        self.receive_timeout = config.get('receive_timeout', 10)
        self.page_size = config.get('page_size', 1000)

        error_config = config.get('error_handling', {})
        self.max_retries = error_config.get('max_retries', 3)
        self.retry_wait = error_config.get('retry_wait_seconds', 5)

        self.server = None
        self.connection = None
        self._connected = False

    @property
    def bind_dn(self) -> str:
        if self.bind_user.lower().endswith(self.root.lower()):
            return self.bind_user
        return f"{self.bind_user},{self.root}"

    def connect(self) -> bool:
        """
        Open and bind the connection, retrying transient failures.

        Returns:
            True once bound

        Raises:
            LDAPConnectionError: If the server cannot be reached or the bind fails
        """
        if self._connected:
            return True
        try:
            self.server = Server(
                self.server_name,
                port=self.port,
                use_ssl=self.use_ssl,
                tls=self._create_tls_config(),
                get_info=NONE,
                connect_timeout=self.connection_timeout
            )
        except LDAPException as e:
            raise LDAPConnectionError(f"Failed to create LDAP server: {e}")

        try:
            retry_call(
                self._open,
                max_attempts=self.max_retries + 1,
                delay=self.retry_wait,
                exceptions=TRANSIENT_ERRORS,
                on_retry=create_retry_callback(f"Connection to {self}")
            )
        except MaxRetriesExceeded as e:
            raise LDAPConnectionError(f"Failed to connect to {self}: {e.last_exception}")
        except LDAPBindError as e:
            raise LDAPConnectionError(f"Bind as {self.bind_dn} failed: {e}")
        except LDAPException as e:
            raise LDAPConnectionError(f"Failed to connect to {self}: {e}")

        self._connected = True
        logger.info(f"Connected and bound to {self} as {self.bind_dn}")
        return True

    def _open(self):
        self.connection = Connection(
            self.server,
            user=self.bind_dn,
            password=self.bind_password,
            auto_bind=False,
            receive_timeout=self.receive_timeout
        )
        try:
            self.connection.open()
            if not self.connection.bind():
                raise LDAPBindError(f"Bind failed: {self.connection.result}")
        except LDAPException:
            self.connection.unbind()
            self.connection = None
            raise

    def _create_tls_config(self) -> Optional[Tls]:
        if not self.use_ssl:
            return None
        tls_config = {'validate': ssl.CERT_REQUIRED if self.verify_ssl else ssl.CERT_NONE}
        if not self.verify_ssl:
            logger.warning("SSL certificate verification disabled")
        if self.ca_cert_file:
            tls_config['ca_certs_file'] = self.ca_cert_file
        try:
            return Tls(**tls_config)
        except LDAPException as e:
            raise LDAPConnectionError(f"Failed to create TLS configuration: {e}")

    def disconnect(self):
        """Close LDAP connection."""
        if self.connection and self._connected:
            try:
                self.connection.unbind()
                logger.debug("LDAP connection closed")
            except LDAPException as e:
                logger.warning(f"Error closing LDAP connection: {e}")
            finally:
                self._connected = False
                self.connection = None

    def _ensure_connected(self):
        if not self._connected:
            self.connect()

    def _drop_connection(self):
        """Forget a broken connection so the next attempt binds again."""
        logger.debug(f"Dropping connection to {self}")
        self._connected = False
        self.connection = None

    # Reads

    def search(self, base: str, search_filter: str, scope: str = 'subtree',
               attributes: Optional[Sequence[str]] = None) -> List[DirectoryEntry]:
        """
        Run a single search.

        Args:
            base: Search base distinguished name
            search_filter: LDAP filter
            scope: 'base', 'level' or 'subtree'
            attributes: Attributes to return (all user attributes if None)

        Returns:
            Matching entries; an empty list if the base does not exist

        Raises:
            LDAPQueryError: If the search fails for any other reason
        """
        def attempt():
            self._ensure_connected()
            logger.debug(f"Searching {base} ({scope}) with filter {search_filter}")
            try:
                self.connection.search(
                    search_base=base,
                    search_filter=search_filter,
                    search_scope=SCOPES[scope],
                    attributes=list(attributes) if attributes else ['*']
                )
            except LDAPException as e:
                if is_retryable_error(e):
                    self._drop_connection()
                    raise RetryableError(e)
                raise LDAPQueryError(f"Search of {base} failed: {e}")

            code = self.connection.result.get('result', ResultCode.SUCCESS)
            if code == ResultCode.NO_SUCH_OBJECT:
                return []
            if code in RETRYABLE_RESULT_CODES:
                raise RetryableError(self.connection.result)
            if code != ResultCode.SUCCESS:
                raise LDAPQueryError(f"Search of {base} failed: {self.connection.result}")
            return self._entries(self.connection.response or [])

        try:
            return self._retrying(f"Search of {base}", attempt)
        except MaxRetriesExceeded as e:
            raise LDAPQueryError(f"Search of {base} failed after {e.attempts} attempts: "
                                 f"{e.last_exception}")

    def paged_search(self, base: str, search_filter: str,
                     attributes: Optional[Sequence[str]] = None) -> Iterator[DirectoryEntry]:
        """Yield every entry of a subtree, fetched page by page."""
        self._ensure_connected()
        logger.debug(f"Paged search of {base} with filter {search_filter}")
        try:
            results = self.connection.extend.standard.paged_search(
                search_base=base,
                search_filter=search_filter,
                search_scope=SUBTREE,
                attributes=list(attributes) if attributes else ['*'],
                paged_size=self.page_size,
                generator=True
            )
            for item in results:
                if item.get('type') == 'searchResEntry':
                    yield DirectoryEntry(item['dn'], item.get('raw_attributes') or {})
        except LDAPException as e:
            raise LDAPQueryError(f"Paged search of {base} failed: {e}")

    @staticmethod
    def _entries(response: Iterable[Dict[str, Any]]) -> List[DirectoryEntry]:
        entries = []
        for item in response:
            if item.get('type') != 'searchResEntry':
                continue
            entries.append(DirectoryEntry(item['dn'], item.get('raw_attributes') or {}))
        return entries

    # Writes

    def add(self, dn: str, object_class: Sequence[str], attributes: Dict[str, Any]) -> OperationResult:
        """Create an entry. Attributes whose value is None or empty are left out."""
        self._ensure_connected()
        values = {name: _values(value) for name, value in attributes.items()
                  if value is not None and value != ''}
        logger.debug(f"Adding {dn} ({', '.join(object_class)})")
        return self._write('add', dn, lambda: self.connection.add(dn, list(object_class), values))

    def modify(self, dn: str, operations: Iterable[Operation]) -> OperationResult:
        """Apply ordered modify operations to an entry in one request."""
        self._ensure_connected()
        changes = build_changes(operations)
        if not changes:
            return OperationResult(ResultCode.SUCCESS)
        return self._write('modify', dn, lambda: self.connection.modify(dn, changes))

    def delete(self, dn: str) -> OperationResult:
        self._ensure_connected()
        return self._write('delete', dn, lambda: self.connection.delete(dn))

    def _write(self, operation: str, dn: str, call) -> OperationResult:
        """Run a write, repeating it while the server answers busy or unavailable."""
        def attempt():
            try:
                call()
            except LDAPException as e:
                raise LDAPQueryError(f"LDAP {operation} of {dn} failed: {e}")
            result = self.connection.result or {}
            outcome = OperationResult(
                result.get('result', ResultCode.SUCCESS),
                result.get('description', ''),
                result.get('message', '')
            )
            if outcome.code in RETRYABLE_RESULT_CODES:
                raise ServerBusyError(outcome)
            return outcome

        try:
            outcome = self._retrying(f"LDAP {operation} of {dn}", attempt)
        except MaxRetriesExceeded as e:
            outcome = e.last_exception.outcome
        if not outcome.ok:
            logger.debug(f"LDAP {operation} of {dn} returned {outcome}")
        return outcome

    def _retrying(self, description: str, func):
        return retry_call(
            func,
            max_attempts=self.max_retries + 1,
            delay=self.retry_wait,
            exceptions=(RetryableError,),
            on_retry=create_retry_callback(description)
        )

    def __str__(self):
        scheme = 'ldaps' if self.use_ssl else 'ldap'
        return f"{scheme}://{self.server_name}:{self.port}"

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.disconnect()
