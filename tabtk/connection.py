# tabtk/connection.py
"""
Connection profiles, the driver registry and the ConnectionManager that owns
the primary and cursor connections to one logical database.
"""

import importlib
import importlib.util
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .defaults import settings
from .exceptions import ConnectionError, NotConnectedError
from .utils import ParamStyle

logger = logging.getLogger(__name__)

# users can define their own drivers in the config file
_user_drivers = {}


DRIVERS = {
    # SQL Server Drivers
    'pyodbc_sqlserver': {
        'module': 'pyodbc',
        'database_type': 'sqlserver',
        'priority': 11,
        'connection_method': 'odbc_string',
        'odbc_driver_name': 'ODBC Driver 17 for SQL Server',
        'param_map': {'server': 'SERVER', 'catalog': 'DATABASE', 'user': 'UID', 'password': 'PWD'},
        'integrated_params': {'Trusted_Connection': 'yes'},
        'extra_params': {'MARS_Connection': 'yes'},
        'connect_timeout_param': 'timeout',
        'command_timeout_attr': 'timeout',
        'default_port': 1433,
    },
    'pymssql': {
        'database_type': 'sqlserver',
        'priority': 12,
        'connection_method': 'kwargs',
        'param_map': {'server': 'server', 'catalog': 'database', 'user': 'user',
                      'password': 'password', 'port': 'port'},
        'connect_timeout_param': 'login_timeout',
        'command_timeout_param': 'timeout',
        'default_port': 1433,
    },

    # PostgreSQL Drivers
    'psycopg2': {
        'database_type': 'postgres',
        'priority': 11,
        'connection_method': 'connection_string',
        'param_map': {'server': 'host', 'catalog': 'dbname', 'user': 'user',
                      'password': 'password', 'port': 'port'},
        'connect_timeout_param': 'connect_timeout',
        'default_port': 5432,
    },
    'psycopg': {  # psycopg3
        'database_type': 'postgres',
        'priority': 12,
        'connection_method': 'connection_string',
        'param_map': {'server': 'host', 'catalog': 'dbname', 'user': 'user',
                      'password': 'password', 'port': 'port'},
        'connect_timeout_param': 'connect_timeout',
        'default_port': 5432,
    },

    # SQLite Driver - catalog is the database file
    'sqlite3': {
        'database_type': 'sqlite',
        'priority': 1,
        'connection_method': 'kwargs',
        'param_map': {'catalog': 'database'},
    },
}


def register_user_drivers(drivers_config: dict) -> None:
    """Register drivers from config file."""
    _user_drivers.update(drivers_config)


def get_all_drivers() -> dict:
    """Get combined built-in and user drivers."""
    return {**DRIVERS, **_user_drivers}


def get_drivers_for_database(db_type: str, valid_only: bool = True) -> List[str]:
    """
    Gets a list of drivers available for the specified database type.

    Parameters:
        db_type (str): The type of database for which to retrieve drivers.
        valid_only (bool): Only include drivers whose module can be imported.

    Returns:
        List[str]: Driver names sorted by priority (lower is preferred).
    """
    all_drivers = get_all_drivers()
    available = []
    for driver_name, info in all_drivers.items():
        if info['database_type'] != db_type:
            continue
        if valid_only and importlib.util.find_spec(info.get('module', driver_name)) is None:
            continue
        available.append(driver_name)

    def sort_key(name):
        priority = all_drivers[name]['priority']
        # user drivers win ties
        if name in _user_drivers:
            priority -= 0.5
        return priority

    available.sort(key=sort_key)
    return available


def get_supported_db_types() -> set:
    """Get all supported database types."""
    return {info['database_type'] for info in get_all_drivers().values()}


class ConnectionKind(Enum):
    """The two connection slots a ConnectionManager holds."""
    PRIMARY = 'primary'    # row streaming, commands, procedures and bulk copy
    CURSOR = 'cursor'      # materialized result sets for sheet paste


@dataclass(frozen=True)
class Credentials:
    """Explicit user/password pair. The password never appears in repr()."""
    user: str
    password: Optional[str] = field(default=None, repr=False)


@dataclass(frozen=True)
class ConnectionProfile:
    """
    Immutable description of one logical database.

    A profile without credentials uses integrated (trusted) authentication.
    Changing any part of a profile means connecting again, which tears down
    both connections.

    Attributes
    ----------
    server : str
        Host or instance name. Ignored for SQLite.
    catalog : str
        Database name, or the database file for SQLite
    credentials : Credentials, optional
        User and password. None means integrated authentication.
    db_type : str
        'sqlserver' (default), 'postgres' or 'sqlite'
    driver : str, optional
        Specific driver from DRIVERS. The highest priority importable driver is
        used when omitted.
    port : int, optional
        Server port. The driver's default is used when omitted.
    options : dict
        Extra driver parameters passed through unchanged
    """
    server: Optional[str]
    catalog: str
    credentials: Optional[Credentials] = None
    db_type: str = field(default_factory=lambda: settings.get('default_db_type', 'sqlserver'))
    driver: Optional[str] = None
    port: Optional[int] = None
    options: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @property
    def integrated(self) -> bool:
        return self.credentials is None

    def with_credentials(self, credentials: Optional[Credentials]) -> 'ConnectionProfile':
        """Copy of this profile using ``credentials`` (None for integrated auth)."""
        return replace(self, credentials=credentials)

    def describe(self) -> str:
        auth = 'integrated' if self.integrated else self.credentials.user
        if self.db_type == 'sqlite':
            return f"{self.db_type}:{self.catalog}"
        return f"{self.db_type}://{auth}@{self.server}/{self.catalog}"


def _resolve_driver(profile: ConnectionProfile) -> Tuple[str, Any]:
    """Import the profile's driver, or the best available one for its db_type."""
    all_drivers = get_all_drivers()
    if profile.driver:
        if profile.driver not in all_drivers:
            raise ValueError(f"Unknown driver: {profile.driver}")
        if all_drivers[profile.driver]['database_type'] != profile.db_type:
            raise ValueError(f"Driver '{profile.driver}' is not compatible with database type '{profile.db_type}'")
        candidates = [profile.driver]
    else:
        candidates = get_drivers_for_database(profile.db_type)

    for driver_name in candidates:
        module_name = all_drivers[driver_name].get('module', driver_name)
        try:
            return driver_name, importlib.import_module(module_name)
        except ImportError:
            logger.warning(f"Driver '{driver_name}' not available")
    raise ImportError(f"No database driver found for database type '{profile.db_type}'")


def get_odbc_connection_string(driver_info: dict, params: Dict[str, Any]) -> str:
    """Build an ODBC connection string: DRIVER={...};SERVER=host,port;DATABASE=..."""
    parts = []
    odbc_driver_name = params.pop('driver', None) or driver_info.get('odbc_driver_name')
    if odbc_driver_name:
        parts.append(f"DRIVER={{{odbc_driver_name}}}")
    port = params.pop('port', None)
    if port and 'SERVER' in params:
        params['SERVER'] = f"{params['SERVER']},{port}"
    parts.extend(f"{key}={value}" for key, value in params.items() if value is not None)
    return ';'.join(parts)


def get_connection_string(params: Dict[str, Any]) -> str:
    """libpq style key=value connection string."""
    return ' '.join(f"{key}={value}" for key, value in params.items() if value is not None)


def build_connect_arguments(driver_name: str, profile: ConnectionProfile) -> Tuple[tuple, dict]:
    """
    Translate a profile into the positional and keyword arguments for the
    driver's ``connect()``.

    Integrated authentication sends no user or password. ODBC drivers get
    ``Trusted_Connection=yes`` instead.
    """
    info = get_all_drivers()[driver_name]
    param_map = info.get('param_map', {})
    values = {'server': profile.server, 'catalog': profile.catalog,
              'port': profile.port or info.get('default_port')}
    if profile.credentials is not None:
        values['user'] = profile.credentials.user
        values['password'] = profile.credentials.password

    params = {param_map[key]: val for key, val in values.items()
              if key in param_map and val is not None}
    if profile.credentials is None:
        params.update(info.get('integrated_params', {}))
    params.update(info.get('extra_params', {}))

    connect_timeout = settings.get('connect_timeout')
    method = info['connection_method']
    if method == 'odbc_string':
        odbc_params = dict(params)
        if 'port' in values and values['port'] is not None:
            odbc_params['port'] = values['port']
        odbc_params.update({k: v for k, v in profile.options.items()})
        kwargs = {}
        if connect_timeout and info.get('connect_timeout_param'):
            kwargs[info['connect_timeout_param']] = connect_timeout
        return (get_odbc_connection_string(info, odbc_params),), kwargs
    elif method == 'connection_string':
        if connect_timeout and info.get('connect_timeout_param'):
            params[info['connect_timeout_param']] = connect_timeout
        params.update(profile.options)
        return (get_connection_string(params),), {}
    else:
        if connect_timeout and info.get('connect_timeout_param'):
            params[info['connect_timeout_param']] = connect_timeout
        command_timeout = settings.get('command_timeout')
        if command_timeout and info.get('command_timeout_param'):
            params[info['command_timeout_param']] = command_timeout
        params.update(profile.options)
        return (), params


def connection_is_open(connection) -> bool:
    """
    True if a DB-API connection object is still usable.

    Drivers with a ``closed`` attribute are trusted (psycopg2 uses 0 for open,
    pyodbc uses False); otherwise opening a cursor is used as the probe.
    """
    if connection is None:
        return False
    closed = getattr(connection, 'closed', None)
    if isinstance(closed, (bool, int)):
        return not closed
    try:
        connection.cursor().close()
        return True
    except Exception as e:
        logger.debug(f"Connection probe failed: {e}")
        return False


class ConnectionManager:
    """
    Owns the lifecycle of the two connections to one logical database.

    The primary connection streams rows and runs commands, procedures and bulk
    copies. The cursor connection is opened lazily with the same profile and is
    only used to produce disconnected result sets for sheet export. Keeping the
    two side by side means a sheet paste never has to share a statement slot
    with an in-flight query on the primary connection.

    Parameters
    ----------
    profile : ConnectionProfile, optional
        Profile to connect with immediately

    Example
    -------
    ::

        manager = ConnectionManager()
        manager.connect(ConnectionProfile(server='S', catalog='C'))   # integrated auth
        manager.is_live()                                            # True
        manager.ensure_cursor_connection()
        manager.terminate()
        manager.is_live()                                            # False
    """

    def __init__(self, profile: Optional[ConnectionProfile] = None):
        self.profile: Optional[ConnectionProfile] = None
        self.driver_name: Optional[str] = None
        self.interface = None
        self._slots: Dict[ConnectionKind, Any] = {kind: None for kind in ConnectionKind}
        if profile is not None:
            self.connect(profile)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.terminate()

    def __repr__(self):
        target = self.profile.describe() if self.profile else 'unconnected'
        return f"ConnectionManager({target}, live={self.is_live()})"

    @property
    def server_type(self) -> Optional[str]:
        if self.driver_name is None:
            return None
        return get_all_drivers()[self.driver_name]['database_type']

    @property
    def paramstyle(self) -> str:
        return getattr(self.interface, 'paramstyle', ParamStyle.DEFAULT)

    @property
    def driver(self):
        """The imported DB-API module, or None when unconnected."""
        return self.interface

    @property
    def driver_info(self) -> dict:
        return get_all_drivers().get(self.driver_name, {})

    def connect(self, profile: ConnectionProfile, credentials: Optional[Credentials] = None) -> ConnectionProfile:
        """
        Open the primary connection, closing any existing connections first.

        Parameters
        ----------
        profile : ConnectionProfile
            Database to connect to
        credentials : Credentials, optional
            Explicit user/password. When omitted the profile's own credentials
            are used, and a profile without credentials uses integrated auth.

        Returns
        -------
        ConnectionProfile
            The profile actually in effect

        Raises
        ------
        ConnectionError
            If the connection could not be opened. The manager is left
            unconnected.
        """
        effective = profile.with_credentials(credentials) if credentials is not None else profile
        self.terminate()
        try:
            self.driver_name, self.interface = _resolve_driver(effective)
            self._slots[ConnectionKind.PRIMARY] = self._open(effective)
        except Exception as e:
            self._reset()
            logger.error(f"Failed to connect to {effective.describe()}: {e}")
            raise ConnectionError(f"Unable to connect to {effective.describe()}: {e}", effective) from e
        self.profile = effective
        logger.info(f"Connected to {effective.describe()} using {self.driver_name}")
        return effective

    def _open(self, profile: ConnectionProfile):
        args, kwargs = build_connect_arguments(self.driver_name, profile)
        connection = self.interface.connect(*args, **kwargs)
        timeout_attr = self.driver_info.get('command_timeout_attr')
        command_timeout = settings.get('command_timeout')
        if timeout_attr and command_timeout:
            setattr(connection, timeout_attr, command_timeout)
        return connection

    def ensure_cursor_connection(self):
        """
        Return the cursor connection, opening it with the primary's profile if
        needed. An open but unusable cursor connection is closed and reopened.

        Raises
        ------
        NotConnectedError
            If there is no live primary connection
        """
        current = self._slots[ConnectionKind.CURSOR]
        if current is not None:
            if connection_is_open(current):
                return current
            logger.info("Cursor connection is no longer usable, reopening")
        return self.open_cursor_connection()

    def open_cursor_connection(self):
        """Open a new cursor connection, always closing the previous one first."""
        if not self.is_live(ConnectionKind.PRIMARY):
            raise NotConnectedError(ConnectionKind.PRIMARY)
        self.close_cursor_connection()
        try:
            connection = self._open(self.profile)
        except Exception as e:
            logger.error(f"Failed to open cursor connection to {self.profile.describe()}: {e}")
            raise ConnectionError(
                f"Unable to open cursor connection to {self.profile.describe()}: {e}", self.profile) from e
        self._slots[ConnectionKind.CURSOR] = connection
        logger.debug(f"Opened cursor connection to {self.profile.describe()}")
        return connection

    def close_cursor_connection(self) -> None:
        self._close_slot(ConnectionKind.CURSOR)

    def terminate(self) -> None:
        """Close both connections. Close errors are logged and discarded."""
        had_connection = any(conn is not None for conn in self._slots.values())
        for kind in (ConnectionKind.CURSOR, ConnectionKind.PRIMARY):
            self._close_slot(kind)
        if had_connection and self.profile is not None:
            logger.info(f"Disconnected from {self.profile.describe()}")

    def _close_slot(self, kind: ConnectionKind) -> None:
        connection = self._slots[kind]
        self._slots[kind] = None
        if connection is None:
            return
        try:
            connection.close()
        except Exception as e:
            logger.warning(f"Ignoring error while closing {kind.value} connection: {e}")

    def _reset(self) -> None:
        self._slots = {kind: None for kind in ConnectionKind}
        self.profile = None
        self.driver_name = None
        self.interface = None

    def is_live(self, kind: ConnectionKind = ConnectionKind.PRIMARY) -> bool:
        """True iff the connection in the ``kind`` slot exists and is open."""
        return connection_is_open(self._slots[kind])

    def get(self, kind: ConnectionKind = ConnectionKind.PRIMARY):
        """The raw connection in a slot, or None."""
        return self._slots[kind]

    def require(self, kind: ConnectionKind = ConnectionKind.PRIMARY):
        """The raw connection in a slot. Raises NotConnectedError if it is not live."""
        if kind is ConnectionKind.CURSOR:
            return self.ensure_cursor_connection()
        if not self.is_live(kind):
            raise NotConnectedError(kind)
        return self._slots[kind]
