# tabtk/config.py
"""
Configuration management for connection profiles.
Supports YAML configuration files with optional password encryption and global settings.
"""

import getpass
import logging
import os
from pathlib import Path
from textwrap import dedent
from typing import Any, Dict, Optional

import keyring
from keyring.errors import KeyringError
import yaml
from cryptography.fernet import Fernet

from .connection import ConnectionProfile, Credentials, register_user_drivers
from .defaults import settings
from .utils import reset_format_cache

logger = logging.getLogger(__name__)

ENCRYPTION_KEY_VAR = 'TABTK_ENCRYPTION_KEY'
KEYRING_SERVICE = 'tabtk'
KEYRING_USER = 'encryption_key'


def _valid_fernet(key: str) -> bool:
    try:
        Fernet(key.encode())
        return True
    except (ValueError, TypeError):
        return False


def _substitute_env(value: Any) -> Any:
    """Replace a ``${VAR_NAME}`` value with the environment variable."""
    if isinstance(value, str) and value.startswith('${') and value.endswith('}'):
        env_var = value[2:-1]
        env_value = os.environ.get(env_var)
        if env_value is None:
            raise ValueError(f"Environment variable {env_var} not set")
        return env_value
    return value


class ConfigManager:
    """
    Manage tabtk configuration from YAML files.

    ConfigManager loads the YAML file that defines named connection profiles,
    stored passwords and global settings. It searches the standard locations,
    validates the structure and merges the ``settings`` section into
    :data:`tabtk.defaults.settings`.

    Passwords may be stored in plain text, as ``${ENV_VAR}`` references, or
    Fernet encrypted. The encryption key comes from the TABTK_ENCRYPTION_KEY
    environment variable or, failing that, the system keyring.

    Configuration File Structure
    ----------------------------
    ::

        # tabtk.yml
        settings:
          default_batch_size: 5000
          null_string: ''

        connections:
          warehouse:
            type: sqlserver
            server: sql01
            catalog: Warehouse          # no user means integrated auth
          reports:
            type: sqlserver
            server: sql02
            catalog: Reports
            user: report_writer
            encrypted_password: gAAAAABh...

        passwords:
          sftp:
            encrypted_password: gAAAAABh...

        drivers:                        # added to the driver registry
          mssql_legacy:
            module: pyodbc
            database_type: sqlserver
            connection_method: odbc_string
            odbc_driver_name: SQL Server

    Configuration Locations
    -----------------------
    1. File specified in config_file parameter
    2. ``./tabtk.yml`` then ``./tabtk.yaml`` (current directory)
    3. ``~/.config/tabtk.yml`` then ``~/.config/tabtk.yaml``

    Parameters
    ----------
    config_file : str or Path, optional
        Path to YAML config file. If None, searches standard locations.

    Raises
    ------
    FileNotFoundError
        If no config file is found
    ValueError
        If the config file is invalid or malformed
    """

    def __init__(self, config_file: Optional[str] = None):
        self.config_file = self._find_config_file(config_file)
        self.config = self._load_config()
        self._fernet = None
        self._apply_settings()

    def _find_config_file(self, config_file: Optional[str]) -> Path:
        """Find the configuration file."""
        if config_file:
            path = Path(config_file)
            if not path.exists():
                raise FileNotFoundError(f"Config file not found: {config_file}")
            return path

        candidates = [
            Path("tabtk.yml"),
            Path("tabtk.yaml"),
            Path.home() / ".config" / "tabtk.yml",
            Path.home() / ".config" / "tabtk.yaml"
        ]
        for candidate in candidates:
            if candidate.exists():
                return candidate

        raise FileNotFoundError(
            "No config file found. Looked in: " +
            ", ".join(str(c) for c in candidates)
        )

    def _load_config(self) -> Dict[str, Any]:
        """Load and validate configuration file."""
        try:
            with open(self.config_file, 'r') as f:
                config = yaml.safe_load(f) or {}
            if not isinstance(config, dict):
                raise ValueError(f"Invalid config file {self.config_file}.")

            for name, conn in (config.get('connections') or {}).items():
                if not isinstance(conn, dict) or ('catalog' not in conn and 'database' not in conn):
                    raise ValueError(f"Invalid connection '{name}' in {self.config_file}: 'catalog' is required")

            if 'passwords' in config:
                if not isinstance(config['passwords'], dict):
                    raise ValueError(f"Invalid config file {self.config_file}: 'passwords' must be a dictionary")
                for name, password_data in config['passwords'].items():
                    if not isinstance(password_data, dict):
                        raise ValueError(f"Invalid password entry '{name}' in {self.config_file}: must be a dictionary")
                    if 'password' not in password_data and 'encrypted_password' not in password_data:
                        raise ValueError(
                            f"Invalid password entry '{name}' in {self.config_file}: "
                            f"'password' or 'encrypted_password' is required")

            if 'settings' in config and not isinstance(config['settings'], dict):
                raise ValueError(f"Invalid config file {self.config_file}: 'settings' must be a dictionary")

            for name, driver in (config.get('drivers') or {}).items():
                if not isinstance(driver, dict) or 'database_type' not in driver:
                    raise ValueError(f"Invalid driver '{name}' in {self.config_file}: 'database_type' is required")

            logger.info(f"Loaded config from {self.config_file}")
            return config
        except (OSError, yaml.YAMLError, ValueError) as e:
            raise ValueError(f"Failed to load config file {self.config_file}: {e}") from e

    def _apply_settings(self) -> None:
        """Apply global settings from config."""
        config_settings = self.config.get('settings') or {}
        for key, value in config_settings.items():
            if isinstance(value, dict) and isinstance(settings.get(key), dict):
                settings[key].update(value)
            else:
                settings[key] = value
        # date formats and null_string are cached by to_string
        reset_format_cache()
        drivers = self.config.get('drivers')
        if drivers:
            register_user_drivers({name: {'priority': 10, 'connection_method': 'kwargs', **info}
                                   for name, info in drivers.items()})

    def get_setting(self, key: str, default: Any = None) -> Any:
        """
        Get a setting value from the config.

        Args:
            key: Setting key (supports dot notation like 'logging.level')
            default: Default value if key not found

        Example:
            batch_size = config.get_setting('default_batch_size', 1000)
        """
        value = self.config.get('settings') or {}
        for k in key.split('.'):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default
        return value

    def _get_encryption_key(self) -> bytes:
        """Get encryption key from environment variable or keyring."""
        # environment variable takes precedence
        key_str = os.environ.get(ENCRYPTION_KEY_VAR)
        if key_str:
            logger.debug(f"Using {ENCRYPTION_KEY_VAR} from environment")
            return key_str.encode()

        try:
            key_str = keyring.get_password(KEYRING_SERVICE, KEYRING_USER)
        except KeyringError as e:
            logger.warning(f"Keyring access failed: {e}")
            key_str = None
        if key_str:
            logger.debug("Using encryption key from keyring")
            return key_str.encode()

        raise ValueError(dedent(f"""\
            Encryption key not found in environment or keyring.
            Run `tabtk store-key` to generate and store a new key in the system keyring,
            or `tabtk generate-key` and put the key in the {ENCRYPTION_KEY_VAR} environment variable."""))

    def _get_fernet(self) -> Fernet:
        if self._fernet is None:
            self._fernet = Fernet(self._get_encryption_key())
        return self._fernet

    def decrypt_password(self, encrypted_password: str) -> str:
        """Decrypt an encrypted password."""
        try:
            return self._get_fernet().decrypt(encrypted_password.encode()).decode()
        except Exception as e:
            raise ValueError(f"Failed to decrypt password: {e}") from e

    def encrypt_password(self, password: str) -> str:
        """Encrypt a password for storage."""
        try:
            return self._get_fernet().encrypt(password.encode()).decode()
        except Exception as e:
            raise ValueError(f"Failed to encrypt password: {e}") from e

    def get_connection_config(self, name: str) -> Dict[str, Any]:
        """Get configuration for a named connection with the password resolved."""
        connections = self.config.get('connections') or {}
        if name not in connections:
            raise ValueError(
                f"Connection '{name}' not found in config. "
                f"Available connections: {list(connections.keys())}"
            )

        config = dict(connections[name])
        if 'encrypted_password' in config:
            config['password'] = self.decrypt_password(config.pop('encrypted_password'))
        if 'password' in config:
            config['password'] = _substitute_env(config['password'])
        return config

    def get_profile(self, name: str, password: Optional[str] = None) -> ConnectionProfile:
        """
        Build a ConnectionProfile from a named connection.

        A connection with no ``user`` (or with ``integrated: true``) uses
        integrated authentication. ``password`` overrides the stored one.
        """
        config = self.get_connection_config(name)
        if password:
            config['password'] = password
        integrated = config.get('integrated', 'user' not in config)
        credentials = None
        if not integrated:
            if 'user' not in config:
                raise ValueError(f"Connection '{name}' has integrated: false but no user")
            credentials = Credentials(config['user'], config.get('password'))
        info = {key: val for key, val in config.items() if key not in ('password', 'encrypted_password')}
        logger.debug(f"Connection {name} config: {info}")
        return ConnectionProfile(
            server=config.get('server') or config.get('host'),
            catalog=config.get('catalog') or config.get('database'),
            credentials=credentials,
            db_type=config.get('type') or settings.get('default_db_type', 'sqlserver'),
            driver=config.get('driver'),
            port=config.get('port'),
            options=dict(config.get('options') or {}),
        )

    def list_connections(self) -> list:
        """List all available connection names."""
        return list((self.config.get('connections') or {}).keys())

    def get_password(self, name: str) -> str:
        """
        Get a stored password by name.

        Raises:
            ValueError: If password not found or decryption fails
        """
        passwords = self.config.get('passwords') or {}
        if name not in passwords:
            raise ValueError(
                f"Password '{name}' not found in config. "
                f"Available passwords: {list(passwords.keys())}"
            )
        password_entry = passwords[name]
        if 'encrypted_password' in password_entry:
            return self.decrypt_password(password_entry['encrypted_password'])
        return _substitute_env(password_entry['password'])

    def list_passwords(self) -> list:
        """List all available password names."""
        return list((self.config.get('passwords') or {}).keys())


# Global config manager instance
_config_manager: Optional[ConfigManager] = None


def _get_manager(config_file: Optional[str] = None) -> ConfigManager:
    global _config_manager
    if config_file:
        return ConfigManager(config_file)
    if _config_manager is None:
        _config_manager = ConfigManager()
    return _config_manager


def set_config_file(config_file: str) -> None:
    """Set the configuration file to use globally."""
    global _config_manager
    _config_manager = ConfigManager(config_file)


def get_profile(name: str, password: Optional[str] = None, config_file: Optional[str] = None) -> ConnectionProfile:
    """ConnectionProfile for a named connection in the config file."""
    return _get_manager(config_file).get_profile(name, password)


def connect(name: str, password: Optional[str] = None, config_file: Optional[str] = None, **engine_options):
    """
    Connect to a named database from configuration.

    Args:
        name: Connection name from config file
        password: Optional password if not stored in config
        config_file: Optional path to config file
        **engine_options: Passed to TransferEngine (batch_size, column_case)

    Returns:
        Connected TransferEngine

    Example:
        with connect('warehouse') as engine:
            engine.write_query_to_pipefile("SELECT * FROM benders", 'benders.txt')
    """
    from .engine import TransferEngine

    profile = get_profile(name, password, config_file)
    engine = TransferEngine(**engine_options)
    engine.connect(profile)
    return engine


def get_password(name: str, config_file: Optional[str] = None) -> str:
    """
    Get a stored password from configuration.

    Example:
        sftp_password = get_password('sftp')
    """
    return _get_manager(config_file).get_password(name)


def get_setting(key: str, default: Any = None, config_file: Optional[str] = None) -> Any:
    """
    Get a setting value from configuration.

    Example:
        batch_size = get_setting('default_batch_size', 1000)
    """
    return _get_manager(config_file).get_setting(key, default)


def generate_encryption_key() -> str:
    """
    Generate a random Fernet encryption key.

    Store it in the TABTK_ENCRYPTION_KEY environment variable or in the system
    keyring with `tabtk store-key [your key]`.
    """
    return Fernet.generate_key().decode()


def store_key(key: Optional[str] = None, force: bool = False) -> bool:
    """
    Store an encryption key in the system keyring, generating one if none is given.

    Returns:
        True if a key was stored, False if one already existed and force is False
    """
    try:
        current_key = keyring.get_password(KEYRING_SERVICE, KEYRING_USER)
    except KeyringError as e:
        logger.debug(f"Keyring lookup failed: {e}")
        current_key = None

    if current_key:
        if not force:
            logger.warning("Encryption key already stored in system keyring. Use --force to overwrite.")
            return False
        logger.warning("Encryption key already stored in system keyring. Overwriting!")

    if key is None:
        key = generate_encryption_key()
    elif not _valid_fernet(key):
        raise ValueError("Invalid encryption key. Must be 32 url-safe base64-encoded bytes.")

    try:
        keyring.set_password(KEYRING_SERVICE, KEYRING_USER, key)
    except KeyringError as e:
        msg = f"Failed to store encryption key in system keyring: {e}"
        logger.error(msg)
        raise ValueError(msg) from e
    logger.info("Stored encryption key in system keyring")
    return True


def encrypt_password(password: Optional[str] = None, encryption_key: Optional[str] = None) -> str:
    """
    Encrypt a password for the config file.

    Args:
        password: Password to encrypt (if None, prompts for input)
        encryption_key: Optional key. If None, uses TABTK_ENCRYPTION_KEY or the keyring

    Returns:
        str: Encrypted password
    """
    if password is None:
        password = getpass.getpass("Enter password to encrypt: ")

    if encryption_key:
        return Fernet(encryption_key.encode()).encrypt(password.encode()).decode()
    # no config file needed, just the key
    temp_config = ConfigManager.__new__(ConfigManager)
    temp_config._fernet = None
    return temp_config.encrypt_password(password)
