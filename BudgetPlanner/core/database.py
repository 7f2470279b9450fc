"""
Local SQLite store for budget records, the sync queue and sync metadata.

Each collection (budgets, categories, transactions, reflections, payment
methods, sync queue) is an independently addressable table of JSON documents
keyed by ``id``. Secondary indexes are sqlite expression indexes over
``json_extract`` so records can be range-scanned by an indexed field.

A metadata table records the last successful sync and the sync state, and an
id map table remembers placeholder ids the server has re-keyed.

Every call opens its own short-lived connection, so the store can be used from
worker threads. :meth:`LocalStore.transaction` groups several writes into one
atomic sqlite transaction.
"""

import contextlib
import datetime
import json
import logging
import pathlib
import sqlite3
import time
from typing import Any, Dict, Iterator, List, Optional

from .models import Table, parse_timestamp
from ..status import status

SYNC_QUEUE: str = 'syncQueue'
META_TABLE: str = 'metatable'
ID_MAP_TABLE: str = 'id_map'

# Collection -> indexed fields
INDEXES: Dict[str, List[str]] = {
    Table.Budgets.value: ['month', 'userId'],
    Table.Categories.value: ['userId'],
    Table.Transactions.value: ['budgetId', 'transactionDate', 'categoryId'],
    Table.Reflections.value: ['budgetId'],
    Table.PaymentMethods.value: ['userId'],
    SYNC_QUEUE: ['status', 'recordId'],
}

META_SCHEMA: Dict[str, str] = {
    'meta_id': 'INTEGER PRIMARY KEY',
    'last_sync': 'TEXT',
    'state': 'TEXT',
}


def _index_name(collection: str, field: str) -> str:
    return f'idx_{collection}_{field}'


class Collection:
    """Accessor for one named collection of JSON records."""

    def __init__(self, store: 'LocalStore', name: str) -> None:
        if name not in INDEXES:
            raise ValueError(f'Unknown collection: "{name}"')
        self.store = store
        self.name = name

    def __repr__(self) -> str:
        return f'<Collection {self.name}>'

    def _check_index(self, field: str) -> None:
        if field not in INDEXES[self.name]:
            raise ValueError(f'Collection "{self.name}" has no index on "{field}".')

    def get(self, record_id: str, conn: Optional[sqlite3.Connection] = None) -> Optional[Dict[str, Any]]:
        """Return the record stored under ``record_id`` or None."""
        with self.store.transaction(conn) as c:
            row = c.execute(f'SELECT data FROM "{self.name}" WHERE id = ?', (str(record_id),)).fetchone()
        return json.loads(row[0]) if row else None

    def put(self, record: Dict[str, Any], conn: Optional[sqlite3.Connection] = None) -> str:
        """Insert or replace a record keyed by its ``id``.

        Returns:
            The record id.

        Raises:
            ValueError: If the record has no id.
        """
        record_id = record.get('id')
        if record_id in (None, ''):
            raise ValueError(f'Cannot store a record without an id in "{self.name}".')
        with self.store.transaction(conn) as c:
            c.execute(
                f'INSERT OR REPLACE INTO "{self.name}" (id, data) VALUES (?, ?)',
                (str(record_id), json.dumps(record, ensure_ascii=False))
            )
        return str(record_id)

    def delete(self, record_id: str, conn: Optional[sqlite3.Connection] = None) -> bool:
        """Delete a record. Returns True if a row was removed."""
        with self.store.transaction(conn) as c:
            cursor = c.execute(f'DELETE FROM "{self.name}" WHERE id = ?', (str(record_id),))
        return cursor.rowcount > 0

    def get_all(self, conn: Optional[sqlite3.Connection] = None) -> List[Dict[str, Any]]:
        """Return every record of the collection."""
        with self.store.transaction(conn) as c:
            rows = c.execute(f'SELECT data FROM "{self.name}"').fetchall()
        return [json.loads(r[0]) for r in rows]

    def get_all_by_index(self, field: str, value: Any,
                         conn: Optional[sqlite3.Connection] = None) -> List[Dict[str, Any]]:
        """Return records whose indexed ``field`` equals ``value``."""
        self._check_index(field)
        with self.store.transaction(conn) as c:
            rows = c.execute(
                f'SELECT data FROM "{self.name}" WHERE json_extract(data, \'$.{field}\') = ?',
                (value,)
            ).fetchall()
        return [json.loads(r[0]) for r in rows]

    def get_range_by_index(self, field: str, lower: Any = None, upper: Any = None,
                           conn: Optional[sqlite3.Connection] = None) -> List[Dict[str, Any]]:
        """Return records whose indexed ``field`` lies in ``[lower, upper]``, ordered by that field.

        Either bound may be None for an open range.
        """
        self._check_index(field)
        expr = f'json_extract(data, \'$.{field}\')'
        clauses: List[str] = [f'{expr} IS NOT NULL']
        params: List[Any] = []
        if lower is not None:
            clauses.append(f'{expr} >= ?')
            params.append(lower)
        if upper is not None:
            clauses.append(f'{expr} <= ?')
            params.append(upper)
        with self.store.transaction(conn) as c:
            rows = c.execute(
                f'SELECT data FROM "{self.name}" WHERE {" AND ".join(clauses)} ORDER BY {expr}',
                params
            ).fetchall()
        return [json.loads(r[0]) for r in rows]

    def count(self, conn: Optional[sqlite3.Connection] = None) -> int:
        """Return the number of records in the collection."""
        with self.store.transaction(conn) as c:
            row = c.execute(f'SELECT COUNT(*) FROM "{self.name}"').fetchone()
        return int(row[0]) if row else 0

    def clear(self, conn: Optional[sqlite3.Connection] = None) -> None:
        """Remove every record of the collection."""
        with self.store.transaction(conn) as c:
            c.execute(f'DELETE FROM "{self.name}"')


class LocalStore:
    """Durable on-device store. Handles schema creation, collections and sync metadata."""

    def __init__(self, path: Optional[pathlib.Path] = None) -> None:
        if path is None:
            from ..settings import lib
            path = lib.settings.db_path
        self.path: pathlib.Path = pathlib.Path(path)
        self._collections: Dict[str, Collection] = {}
        self._initialize_schema_if_needed()

    def connection(self) -> sqlite3.Connection:
        """Return a new connection to the store database."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.path), timeout=5.0)
        conn.set_progress_handler(lambda: logging.debug('Waiting on DB lock…'), 100000)
        return conn

    @contextlib.contextmanager
    def transaction(self, conn: Optional[sqlite3.Connection] = None) -> Iterator[sqlite3.Connection]:
        """Yield a connection; commit on success, roll back on error.

        When ``conn`` is given the caller owns it: it is yielded as is and
        committed by the outermost transaction only.
        """
        if conn is not None:
            yield conn
            return

        conn = self.connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _initialize_schema_if_needed(self) -> None:
        """Create collection, metadata and id map tables and their indexes when missing.

        Raises:
            status.StoreInvalidException: If the schema cannot be created.
        """
        try:
            with self.transaction() as conn:
                for name, fields in INDEXES.items():
                    conn.execute(f'CREATE TABLE IF NOT EXISTS "{name}" (id TEXT PRIMARY KEY, data TEXT NOT NULL)')
                    for field in fields:
                        conn.execute(
                            f'CREATE INDEX IF NOT EXISTS "{_index_name(name, field)}" '
                            f'ON "{name}" (json_extract(data, \'$.{field}\'))'
                        )

                meta_cols_sql = ', '.join(f'"{n}" {typedef}' for n, typedef in META_SCHEMA.items())
                conn.execute(f'CREATE TABLE IF NOT EXISTS {META_TABLE} ({meta_cols_sql})')
                conn.execute(
                    f'INSERT OR IGNORE INTO {META_TABLE} (meta_id, last_sync, state) VALUES (1, NULL, ?)',
                    ('idle',)
                )

                conn.execute(
                    f'CREATE TABLE IF NOT EXISTS {ID_MAP_TABLE} ('
                    '"tbl" TEXT NOT NULL, "local_id" TEXT NOT NULL, "server_id" TEXT NOT NULL, '
                    '"mapped_at" TEXT, PRIMARY KEY ("tbl", "local_id"))'
                )
            logging.debug(f'Local store schema ready at {self.path}.')
        except sqlite3.Error as e:
            logging.error(f'SQLite error during schema initialization: {e}', exc_info=True)
            raise status.StoreInvalidException(f'Unrecoverable store schema error: {e}') from e

    def collection(self, name: str) -> Collection:
        """Return the accessor for a named collection (``Table`` value or ``syncQueue``)."""
        name = str(name)
        if name not in self._collections:
            self._collections[name] = Collection(self, name)
        return self._collections[name]

    def stamp(self, timestamp: str) -> None:
        """Record the last successful sync timestamp."""
        with self.transaction() as conn:
            conn.execute(f'UPDATE {META_TABLE} SET last_sync=? WHERE meta_id=1', (timestamp,))

    def get_stamp(self) -> Optional[str]:
        """Retrieve the last successful sync timestamp, or None if never synced or invalid."""
        with self.transaction() as conn:
            row = conn.execute(f'SELECT last_sync FROM {META_TABLE} WHERE meta_id=1').fetchone()
        if not row or not row[0]:
            return None
        if parse_timestamp(row[0]) is None:
            logging.warning(f'Invalid last sync date format in DB: {row[0]}.')
            return None
        return row[0]

    def set_state(self, state: str) -> None:
        """Persist the sync state (idle / syncing / error)."""
        with self.transaction() as conn:
            conn.execute(f'UPDATE {META_TABLE} SET state=? WHERE meta_id=1', (str(state),))

    def get_state(self) -> Optional[str]:
        """Return the persisted sync state."""
        with self.transaction() as conn:
            row = conn.execute(f'SELECT state FROM {META_TABLE} WHERE meta_id=1').fetchone()
        return row[0] if row else None

    def map_id(self, table: str, local_id: str, server_id: str,
               conn: Optional[sqlite3.Connection] = None) -> None:
        """Remember that ``local_id`` of ``table`` was re-keyed to ``server_id``."""
        with self.transaction(conn) as c:
            c.execute(
                f'INSERT OR REPLACE INTO {ID_MAP_TABLE} (tbl, local_id, server_id, mapped_at) VALUES (?, ?, ?, ?)',
                (str(table), str(local_id), str(server_id),
                 datetime.datetime.now(datetime.timezone.utc).isoformat())
            )

    def lookup_id(self, table: str, local_id: str) -> Optional[str]:
        """Return the server id a placeholder id was re-keyed to, if any."""
        with self.transaction() as conn:
            row = conn.execute(
                f'SELECT server_id FROM {ID_MAP_TABLE} WHERE tbl=? AND local_id=?',
                (str(table), str(local_id))
            ).fetchone()
        return row[0] if row else None

    def clear_all(self) -> None:
        """Remove every record, queued operation and id mapping (e.g. on logout)."""
        with self.transaction() as conn:
            for name in INDEXES:
                conn.execute(f'DELETE FROM "{name}"')
            conn.execute(f'DELETE FROM {ID_MAP_TABLE}')
            conn.execute(f'UPDATE {META_TABLE} SET last_sync=NULL, state=? WHERE meta_id=1', ('idle',))
        logging.info('All local data cleared.')

    def delete(self) -> None:
        """Delete the store database file, retrying on failure.

        Raises:
            status.StoreInvalidException: If unable to remove the database file after retries.
        """
        if not self.path.exists():
            logging.debug('No store database found to delete.')
            return

        max_attempts = 5
        attempt = 0
        wait_seconds = 0.2

        while attempt < max_attempts:
            attempt += 1
            try:
                self.path.unlink()
                logging.info(f'Store database removed: {self.path}')
                return
            except OSError as ex:
                logging.error(f'Error removing store DB (attempt {attempt}/{max_attempts}): {ex}')
                if attempt < max_attempts:
                    time.sleep(wait_seconds)
                    wait_seconds *= 1.5
                else:
                    raise status.StoreInvalidException(
                        f'Failed to remove store DB {self.path} after {max_attempts} attempts: {ex}'
                    ) from ex
