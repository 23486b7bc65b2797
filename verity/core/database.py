import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

import psycopg2
import structlog
from psycopg2 import extras
from psycopg2.pool import ThreadedConnectionPool

from verity.blockchain.block import Block
from verity.core.exceptions import ImmutableBlockError, StorageFailure
from verity.core.utils import format_hash

logger = structlog.get_logger()


class BlockStore(ABC):
    """
    Durable store of sealed blocks, keyed by index and indexed by fingerprint.

    The store is the source of truth for the chain: the in-memory ledger is
    rebuilt from it at startup.
    """

    backend = "abstract"

    @abstractmethod
    def put(self, block: Block) -> None:
        """Store a block. Idempotent for identical content; conflicting content raises ImmutableBlockError."""

    @abstractmethod
    def get(self, index: int) -> Optional[Block]:
        """Block stored at index, or None."""

    @abstractmethod
    def find_by_fingerprint(self, fingerprint: str) -> Optional[Block]:
        """Most recently stored block carrying this fingerprint, or None."""

    @abstractmethod
    def length(self) -> int:
        """Number of stored blocks (also the next index to assign)."""

    @abstractmethod
    def iter_blocks(self) -> Iterator[Block]:
        """All stored blocks in index order."""

    def check_connection(self) -> bool:
        return True

    def stats(self) -> Dict[str, Any]:
        return {"backend": self.backend, "blocks_count": self.length()}

    def close(self) -> None:
        pass


def _fingerprint_of(block: Block) -> Optional[str]:
    data = block.data if isinstance(block.data, dict) else {}
    return data.get("fingerprint")


class InMemoryBlockStore(BlockStore):
    """Process-local block store for development and tests."""

    backend = "memory"

    def __init__(self):
        self._records: Dict[int, Dict[str, Any]] = {}
        self._fingerprints: Dict[str, List[int]] = {}
        self._lock = threading.Lock()

    def put(self, block: Block) -> None:
        record = block.to_record()
        with self._lock:
            existing = self._records.get(block.index)
            if existing is not None:
                if existing == record:
                    logger.debug("Block already stored, skipping", index=block.index)
                    return
                raise ImmutableBlockError(f"block {block.index} is already stored with different content")

            self._records[block.index] = _copy_record(record)
            fingerprint = _fingerprint_of(block)
            if fingerprint:
                self._fingerprints.setdefault(fingerprint, []).append(block.index)

        logger.debug("Block stored", backend=self.backend, index=block.index, hash=format_hash(block.hash))

    def get(self, index: int) -> Optional[Block]:
        with self._lock:
            record = self._records.get(index)
            return Block.from_record(_copy_record(record)) if record else None

    def find_by_fingerprint(self, fingerprint: str) -> Optional[Block]:
        with self._lock:
            indices = self._fingerprints.get(fingerprint)
            if not indices:
                return None
            return Block.from_record(_copy_record(self._records[max(indices)]))

    def length(self) -> int:
        with self._lock:
            return len(self._records)

    def iter_blocks(self) -> Iterator[Block]:
        with self._lock:
            records = [_copy_record(self._records[i]) for i in sorted(self._records)]
        for record in records:
            yield Block.from_record(record)


def _copy_record(record: Dict[str, Any]) -> Dict[str, Any]:
    copied = dict(record)
    if isinstance(copied.get("data"), dict):
        copied["data"] = dict(copied["data"])
    return copied


class PostgresBlockStore(BlockStore):
    """Block store backed by a PostgreSQL `blocks` table (see schema.sql)."""

    backend = "postgres"

    def __init__(self, dsn: str, min_connections: int = 1, max_connections: int = 10, pool=None):
        self.dsn = dsn
        self.min_connections = min_connections
        self.max_connections = max_connections
        self._pool = pool
        self._pool_lock = threading.Lock()

    def _initialize_pool(self):
        """Initialize the connection pool on first use."""
        with self._pool_lock:
            if self._pool is None:
                try:
                    self._pool = ThreadedConnectionPool(
                        self.min_connections,
                        self.max_connections,
                        self.dsn
                    )
                    logger.info("PostgreSQL connection pool initialized",
                                min_connections=self.min_connections,
                                max_connections=self.max_connections)
                except psycopg2.Error as e:
                    logger.error("Failed to initialize PostgreSQL connection pool", error=str(e))
                    raise StorageFailure(f"could not connect to block store: {e}") from e
        return self._pool

    @contextmanager
    def get_db_connection(self):
        """Context manager for pooled connections with rollback on failure."""
        pool = self._initialize_pool()

        conn = None
        try:
            conn = pool.getconn()
            yield conn
        except Exception as e:
            if conn:
                conn.rollback()
            logger.error("Database operation failed", error=str(e))
            raise
        finally:
            if conn:
                pool.putconn(conn)

    def put(self, block: Block) -> None:
        sql = """
        INSERT INTO blocks ("index", "timestamp", data, previous_hash, hash, nonce)
        VALUES (%s, %s, %s, %s, %s, %s)
        ON CONFLICT ("index") DO NOTHING
        RETURNING "index"
        """
        try:
            with self.get_db_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(sql, (
                        block.index,
                        block.timestamp,
                        extras.Json(block.data),
                        block.previous_hash,
                        block.hash,
                        block.nonce
                    ))
                    inserted = cur.fetchone()
                    conn.commit()
        except psycopg2.Error as e:
            logger.error("Failed to store block", index=block.index, error=str(e))
            raise StorageFailure(f"failed to store block {block.index}: {e}") from e

        if inserted is None:
            existing = self.get(block.index)
            if existing is None or existing.to_record() != block.to_record():
                raise ImmutableBlockError(f"block {block.index} is already stored with different content")
            logger.debug("Block already stored, skipping", index=block.index)
            return

        logger.debug("Block stored", backend=self.backend, index=block.index, hash=format_hash(block.hash))

    def _fetch_one(self, sql: str, params: tuple) -> Optional[Block]:
        try:
            with self.get_db_connection() as conn:
                with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                    cur.execute(sql, params)
                    row = cur.fetchone()
        except psycopg2.Error as e:
            logger.error("Block lookup failed", error=str(e))
            raise StorageFailure(f"block lookup failed: {e}") from e

        return _row_to_block(row) if row else None

    def get(self, index: int) -> Optional[Block]:
        sql = """
        SELECT "index", "timestamp", data, previous_hash, hash, nonce
        FROM blocks
        WHERE "index" = %s
        """
        return self._fetch_one(sql, (index,))

    def find_by_fingerprint(self, fingerprint: str) -> Optional[Block]:
        sql = """
        SELECT "index", "timestamp", data, previous_hash, hash, nonce
        FROM blocks
        WHERE data->>'fingerprint' = %s
        ORDER BY "index" DESC
        LIMIT 1
        """
        block = self._fetch_one(sql, (fingerprint,))
        logger.debug("Fingerprint lookup completed",
                     fingerprint=format_hash(fingerprint), found=block is not None)
        return block

    def length(self) -> int:
        try:
            with self.get_db_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT COUNT(*) FROM blocks")
                    result = cur.fetchone()
        except psycopg2.Error as e:
            logger.error("Failed to count blocks", error=str(e))
            raise StorageFailure(f"failed to count blocks: {e}") from e

        return int(result[0])

    def iter_blocks(self) -> Iterator[Block]:
        sql = """
        SELECT "index", "timestamp", data, previous_hash, hash, nonce
        FROM blocks
        ORDER BY "index"
        """
        try:
            with self.get_db_connection() as conn:
                with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                    cur.execute(sql)
                    rows = cur.fetchall()
        except psycopg2.Error as e:
            logger.error("Failed to load blocks", error=str(e))
            raise StorageFailure(f"failed to load blocks: {e}") from e

        for row in rows:
            yield _row_to_block(row)

    def check_connection(self) -> bool:
        """Check if the database connection is working."""
        try:
            with self.get_db_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1")
                    result = cur.fetchone()

            logger.info("Block store connection check successful")
            return result[0] == 1

        except Exception as e:
            logger.error("Block store connection check failed", error=str(e))
            return False

    def stats(self) -> Dict[str, Any]:
        try:
            with self.get_db_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute("""
                        SELECT
                            (SELECT COUNT(*) FROM blocks) AS blocks_count,
                            (SELECT COUNT(DISTINCT data->>'fingerprint') FROM blocks) AS fingerprints_count,
                            (SELECT version()) AS postgres_version
                    """)
                    result = cur.fetchone()

            return {
                "backend": self.backend,
                "blocks_count": result[0],
                "fingerprints_count": result[1],
                "postgres_version": result[2],
            }

        except Exception as e:
            logger.error("Failed to get block store stats", error=str(e))
            return {"backend": self.backend, "error": str(e)}

    def close(self) -> None:
        with self._pool_lock:
            if self._pool is not None:
                self._pool.closeall()
                self._pool = None
                logger.info("PostgreSQL connection pool closed")


def _row_to_block(row: Dict[str, Any]) -> Block:
    return Block.from_record({
        "index": row["index"],
        "timestamp": row["timestamp"],
        "data": row["data"],
        "previousHash": row["previous_hash"],
        "hash": row["hash"],
        "nonce": row["nonce"],
    })


def create_block_store(backend: str, dsn: Optional[str] = None,
                       min_connections: int = 1, max_connections: int = 10) -> BlockStore:
    """Build the configured block store backend."""
    if backend == "memory":
        return InMemoryBlockStore()
    if backend == "postgres":
        if not dsn:
            raise ValueError("a DSN is required for the postgres block store")
        return PostgresBlockStore(dsn, min_connections, max_connections)
    raise ValueError(f"unknown block store backend: {backend!r}")
