# tests/conftest.py
"""
Shared test fixtures and configuration for pytest.
"""

import logging
import os
import sqlite3
from pathlib import Path
from unittest.mock import Mock, patch

import pytest

from tabtk.config import set_config_file
from tabtk.connection import ConnectionProfile
from tabtk.engine import TransferEngine

TEST_KEY = '2YvTXI9DHQPy4d6-ZC9NxcypvLMsJ94OBdmoHyjmwbM='

BENDERS = [
    (1, 'Aang', 'Air Nomads', 10),
    (2, 'Katara', 'Water Tribe', 9),
    (3, 'Toph', 'Earth Kingdom', 10),
]


# Set test config file and encryption key for all tests
@pytest.fixture(autouse=True)
def setup_test_config():
    """Automatically set test config file and encryption key for all tests."""
    test_config = Path(__file__).parent / 'test.yml'
    set_config_file(str(test_config))

    with patch.dict(os.environ, {'TABTK_ENCRYPTION_KEY': TEST_KEY}):
        yield


@pytest.fixture
def restore_root_logger():
    """Put the root logger back the way it was after setup_logging() tests."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)


def make_cursor(description=None, rows=()):
    """Mock DB-API cursor returning ``rows``."""
    rows = list(rows)
    cursor = Mock()
    cursor.description = description
    cursor.rowcount = len(rows)
    cursor.fetchall.return_value = rows
    cursor.fetchone.side_effect = rows + [None]
    cursor.fetchmany.return_value = rows
    cursor.nextset.return_value = False
    cursor.execute.return_value = None
    cursor.executemany.return_value = None
    return cursor


def describe(*names):
    return [(name, None, None, None, None, None, None) for name in names]


class FakeConnection:
    """DB-API connection stand-in whose ``closed`` flag is honest."""

    def __init__(self, driver):
        self.driver = driver
        self.closed = False
        self.close_count = 0
        self.commit_count = 0
        self.rollback_count = 0
        self.cursors = []
        self.timeout = 0

    def cursor(self):
        if self.closed:
            raise RuntimeError('Attempt to use a closed connection')
        cursor = make_cursor(self.driver.description, self.driver.rows)
        self.cursors.append(cursor)
        return cursor

    def commit(self):
        self.commit_count += 1

    def rollback(self):
        self.rollback_count += 1

    def close(self):
        self.close_count += 1
        self.closed = True


class FakeDriver:
    """DB-API module stand-in. Every connect() returns a new FakeConnection."""
    paramstyle = 'qmark'

    def __init__(self):
        self.connections = []
        self.connect_args = []
        self.fail_with = None
        self.description = describe('id', 'name')
        self.rows = [(1, 'Aang'), (2, 'Katara')]

    def connect(self, *args, **kwargs):
        self.connect_args.append((args, kwargs))
        if self.fail_with is not None:
            raise self.fail_with
        connection = FakeConnection(self)
        self.connections.append(connection)
        return connection


@pytest.fixture
def fake_driver():
    """Resolve every profile to a fake SQL Server ODBC driver."""
    driver = FakeDriver()
    with patch('tabtk.connection._resolve_driver', return_value=('pyodbc_sqlserver', driver)):
        yield driver


@pytest.fixture
def server_profile():
    """Integrated auth SQL Server profile."""
    return ConnectionProfile(server='S', catalog='C')


@pytest.fixture
def benders_db(tmp_path):
    """SQLite database file with a populated benders table and an empty recruits table."""
    db_path = tmp_path / 'ember_island.db'
    conn = sqlite3.connect(str(db_path))
    conn.execute("""
                 CREATE TABLE benders
                 (
                     id     INTEGER     NOT NULL PRIMARY KEY,
                     name   VARCHAR(20) NOT NULL,
                     nation TEXT,
                     rank   INTEGER
                 )
                 """)
    conn.executemany("INSERT INTO benders (id, name, nation, rank) VALUES (?, ?, ?, ?)", BENDERS)
    conn.execute("""
                 CREATE TABLE recruits
                 (
                     id         INTEGER     NOT NULL,
                     name       VARCHAR(20) NOT NULL,
                     nation     TEXT,
                     enlisted   DATE,
                     stipend    NUMERIC(8, 2)
                 )
                 """)
    conn.commit()
    conn.close()
    return db_path


@pytest.fixture
def sqlite_profile(benders_db):
    return ConnectionProfile(server=None, catalog=str(benders_db), db_type='sqlite')


@pytest.fixture
def engine(sqlite_profile):
    """TransferEngine connected to the benders database."""
    eng = TransferEngine()
    eng.connect(sqlite_profile)
    yield eng
    eng.close()


def table_rows(db_path, sql):
    conn = sqlite3.connect(str(db_path))
    try:
        return conn.execute(sql).fetchall()
    finally:
        conn.close()


@pytest.fixture
def recruits_file(tmp_path):
    """Pipe delimited file matching the recruits table."""
    path = tmp_path / 'recruits.txt'
    path.write_text(
        "id|name|nation|enlisted|stipend\n"
        "10|Haru|Earth Kingdom|2024-03-01|12.50\n"
        "11|Suki|Earth Kingdom|2024-03-02|15.00\n"
        "12|Teo|Air Nomads||\n",
        encoding='utf-8'
    )
    return path
