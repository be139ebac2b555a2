import sqlite3
from pathlib import Path

import pytest

from mineosctl.config import load_settings
from mineosctl.credentials import (
    CredentialStoreError, NoActiveCredential, parse_data_source,
    refresh_api_key, resolve_database_path,
)


def _create_db(path: Path, rows):
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path)
    conn.execute("CREATE TABLE ApiKeys (Key TEXT, Revoked INTEGER, CreatedAt TEXT)")
    conn.executemany("INSERT INTO ApiKeys VALUES (?, ?, ?)", rows)
    conn.commit()
    conn.close()


def test_parse_data_source():
    assert parse_data_source("Data Source=/app/data/mineos.db;Cache=Shared") == "/app/data/mineos.db"
    assert parse_data_source("Mode=ReadWrite; data source = x.db") == "x.db"
    assert parse_data_source("") == ""


def test_resolve_database_path_default(env_file: Path):
    db = env_file.parent / "data" / "mineos.db"
    _create_db(db, [])
    assert resolve_database_path(load_settings(env_file)) == db.resolve()


def test_resolve_database_path_container_source(env_file: Path):
    with open(env_file, "a", encoding="utf-8") as f:
        f.write("Data__Directory=state\n")
        f.write("ConnectionStrings__DefaultConnection=Data Source=/app/data/keys.db\n")
    db = env_file.parent / "state" / "keys.db"
    _create_db(db, [])
    assert resolve_database_path(load_settings(env_file)) == db.resolve()


def test_resolve_database_path_missing(env_file: Path):
    with pytest.raises(CredentialStoreError, match="sqlite database not found"):
        resolve_database_path(load_settings(env_file))


def test_refresh_writes_newest_active_key(env_file: Path):
    _create_db(env_file.parent / "data" / "mineos.db", [
        ("old-key", 0, "2024-01-01T00:00:00"),
        ("revoked-newest", 1, "2024-03-01T00:00:00"),
        ("current-key", 0, "2024-02-01T00:00:00"),
    ])

    key = refresh_api_key(load_settings(env_file))

    assert key == "current-key"
    settings = load_settings(env_file)
    assert settings.management_api_key == "current-key"
    assert settings.effective_api_key == "current-key"


def test_refresh_with_no_active_key(env_file: Path):
    _create_db(env_file.parent / "data" / "mineos.db", [
        ("revoked", 1, "2024-01-01T00:00:00"),
    ])
    with pytest.raises(NoActiveCredential):
        refresh_api_key(load_settings(env_file))
    assert load_settings(env_file).management_api_key == ""


def test_refresh_rejects_other_databases(env_file: Path):
    with open(env_file, "a", encoding="utf-8") as f:
        f.write("DB_TYPE=postgres\n")
    with pytest.raises(CredentialStoreError, match="only supported for sqlite"):
        refresh_api_key(load_settings(env_file))
