"""
API key refresh from the stack's local SQLite database.

The management API stores its keys in an ApiKeys table. When the key in the
settings file has been rotated or revoked, the newest non-revoked key in
that table is the authoritative replacement.
"""

import sqlite3
from pathlib import Path
from typing import Optional

from .config import API_KEY_ENV, ConfigError, Settings, set_env_value
from .utils import get_logger


DATABASE_FILE = "mineos.db"
CONTAINER_DATA_DIR = "/app/data/"

NEWEST_KEY_QUERY = (
    "SELECT Key FROM ApiKeys WHERE Revoked=0 ORDER BY CreatedAt DESC LIMIT 1"
)


class CredentialStoreError(Exception):
    """The credential store could not supply a key."""
    pass


class NoActiveCredential(CredentialStoreError):
    """The store holds no usable (non-revoked) key."""
    pass


def is_sqlite(settings: Settings) -> bool:
    db_type = settings.database_type.strip()
    return not db_type or db_type.lower() == "sqlite"


def parse_data_source(connection: str) -> str:
    """Extract the ``Data Source`` value from an ADO-style connection string."""
    for part in (connection or "").split(";"):
        key, sep, value = part.partition("=")
        if not sep:
            continue
        if key.strip().lower() in ("data source", "datasource"):
            return value.strip()
    return ""


def resolve_data_dir(settings: Settings) -> Path:
    """Data directory, relative paths anchored at the settings file's directory."""
    data_dir = Path(settings.data_directory.strip() or "./data")
    if not data_dir.is_absolute():
        data_dir = settings.env_path.parent / data_dir
    return data_dir.resolve()


def resolve_database_path(settings: Settings) -> Path:
    """
    Locate the SQLite database file.

    Raises:
        CredentialStoreError: If the database file does not exist
    """
    data_dir = resolve_data_dir(settings)
    db_path = data_dir / DATABASE_FILE

    source = parse_data_source(settings.database_connection)
    if source:
        if source.startswith(CONTAINER_DATA_DIR):
            # Path inside the API container; the same file is mounted at data_dir
            db_path = data_dir / Path(source).name
        elif Path(source).is_absolute():
            db_path = Path(source)
        else:
            db_path = data_dir / source

    if not db_path.is_file():
        raise CredentialStoreError(f"sqlite database not found at {db_path}")
    return db_path


def newest_active_key(db_path: Path, timeout: float = 5.0) -> str:
    """
    Query the newest non-revoked key.

    Raises:
        NoActiveCredential: If there is no usable key
        CredentialStoreError: If the database cannot be queried
    """
    try:
        # Read-only so a refresh can never modify the API's database
        uri = Path(db_path).resolve().as_uri() + "?mode=ro"
        conn = sqlite3.connect(uri, uri=True, timeout=timeout)
    except sqlite3.Error as e:
        raise CredentialStoreError(f"Could not open {db_path}: {e}")

    try:
        row = conn.execute(NEWEST_KEY_QUERY).fetchone()
    except sqlite3.Error as e:
        raise CredentialStoreError(f"Could not query API keys: {e}")
    finally:
        conn.close()

    key = (row[0] if row else None) or ""
    key = str(key).strip()
    if not key:
        raise NoActiveCredential("no active API key found in database")
    return key


def refresh_api_key(settings: Settings, db_path: Optional[Path] = None) -> str:
    """
    Copy the newest active key from the database into the settings file.

    Args:
        settings: Current settings (locates both files)
        db_path: Explicit database path (resolved from settings when None)

    Returns:
        The refreshed key

    Raises:
        CredentialStoreError: If no key could be obtained or persisted
    """
    logger = get_logger()

    if not is_sqlite(settings):
        raise CredentialStoreError(
            "API key refresh is only supported for sqlite installations"
        )

    if db_path is None:
        db_path = resolve_database_path(settings)

    key = newest_active_key(db_path)

    try:
        set_env_value(settings.env_path, API_KEY_ENV, key)
    except ConfigError as e:
        raise CredentialStoreError(str(e))

    logger.info(f"Refreshed {API_KEY_ENV} from {db_path}")
    return key
