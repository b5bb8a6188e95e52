"""
Database connection management.

Provides SQLite connection for data persistence.
"""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from ai_gen_guard.core.errors import PersistenceError

DEFAULT_DB_PATH = "ai_gen_guard.db"


def get_connection(db_path: str = DEFAULT_DB_PATH, timeout: float = 30.0) -> sqlite3.Connection:
    """Create and return a SQLite database connection with foreign keys enabled.

    Args:
        db_path: Path to SQLite database file
        timeout: Seconds to wait for a competing writer to release its lock

    Returns:
        SQLite connection with foreign key constraints enabled
    """
    path = Path(db_path)
    conn = sqlite3.connect(str(path), timeout=timeout)
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@contextmanager
def connection(db_path: str = DEFAULT_DB_PATH) -> Iterator[sqlite3.Connection]:
    """Yield a connection that is always closed, translating SQLite failures.

    Raises:
        PersistenceError: If any SQLite operation inside the block fails
    """
    conn = get_connection(db_path)
    try:
        yield conn
    except sqlite3.Error as e:
        raise PersistenceError(str(e)) from e
    finally:
        conn.close()
