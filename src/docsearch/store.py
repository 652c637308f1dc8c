"""Vector store for documents and their embedded chunks.

Provides a storage interface with a SQLite implementation backed by the
sqlite-vec extension:
- Document records keyed by path with content-hash change detection
- Atomic replacement of a document's chunk set
- k-nearest-neighbor search joined with document metadata
- Automatic, destructive migration when the embedding dimension changes

Concurrency: many readers may search at once; writers (upserts, chunk
replacement, migrations) run alone and block readers while they do. Schema
creation and migration additionally hold a file lock next to the database so
separate processes do not migrate the same file concurrently.
"""

import sqlite3
import struct
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator, Sequence
from contextlib import contextmanager, nullcontext
from datetime import UTC, datetime
from typing import Any

import sqlite_vec
from filelock import FileLock
from loguru import logger

from docsearch.exceptions import DimensionMismatchError, VectorStoreError
from docsearch.models import (
    ChunkRecord,
    DocumentRecord,
    EmbeddedChunk,
    IndexStats,
    SearchResult,
)

DEFAULT_EMBEDDING_DIMENSION = 3072  # text-embedding-3-large
SCHEMA_LOCK_TIMEOUT_SECONDS = 30
MAX_KNN_LIMIT = 4096  # sqlite-vec upper bound for k
IN_MEMORY = ":memory:"


def encode_vector(vector: Sequence[float]) -> bytes:
    """Serialize a vector as consecutive little-endian float32 values.

    Example:
        >>> encode_vector([1.0]).hex()
        '0000803f'
    """
    return struct.pack(f"<{len(vector)}f", *vector)


def decode_vector(blob: bytes) -> list[float]:
    """Deserialize little-endian float32 bytes produced by ``encode_vector``."""
    if len(blob) % 4:
        raise ValueError(f"Vector blob length {len(blob)} is not a multiple of 4")
    return list(struct.unpack(f"<{len(blob) // 4}f", blob))


class ReadWriteLock:
    """Many concurrent readers or one writer; waiting writers block new readers."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._waiting_writers:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._waiting_writers += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._waiting_writers -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class VectorStore(ABC):
    """Abstract base class for vector store implementations."""

    dimension: int

    @abstractmethod
    def initialize(self) -> None:
        """Create the schema if needed (idempotent) and reconcile the dimension."""
        ...

    @abstractmethod
    def close(self) -> None:
        """Release the underlying connection."""
        ...

    @abstractmethod
    def upsert_document(self, path: str, title: str, content_hash: str) -> int:
        """Insert or update a document keyed by path.

        Args:
            path: Unique document path
            title: Document title
            content_hash: Hex digest of the raw content

        Returns:
            The document's id
        """
        ...

    @abstractmethod
    def get_document(self, path: str) -> DocumentRecord | None:
        """Return the document stored under ``path``, or None."""
        ...

    @abstractmethod
    def delete_document(self, path: str) -> bool:
        """Delete a document and all its chunks.

        Returns:
            True if a document was deleted
        """
        ...

    @abstractmethod
    def insert_chunks(self, document_id: int, chunks: Sequence[EmbeddedChunk]) -> None:
        """Replace every chunk of a document with ``chunks``, atomically."""
        ...

    @abstractmethod
    def save_document(
        self, path: str, title: str, content_hash: str, chunks: Sequence[EmbeddedChunk]
    ) -> DocumentRecord:
        """Upsert a document and replace its chunks in one transaction."""
        ...

    @abstractmethod
    def search(self, query_embedding: Sequence[float], limit: int) -> list[SearchResult]:
        """Return up to ``limit`` nearest chunks ordered by ascending distance."""
        ...

    @abstractmethod
    def get_chunks(self, document_id: int, include_embeddings: bool = False) -> list[ChunkRecord]:
        """Return a document's chunks ordered by chunk index."""
        ...

    @abstractmethod
    def needs_update(self, path: str, content_hash: str) -> bool:
        """Return True if ``path`` is unknown or stored with another hash."""
        ...

    @abstractmethod
    def stats(self) -> IndexStats:
        """Return store statistics."""
        ...


class SQLiteVectorStore(VectorStore):
    """SQLite vector store using a sqlite-vec ``vec0`` table for KNN search.

    Layout:
        - ``metadata``: key/value pairs, including the embedding ``dimension``
        - ``documents``: one row per path
        - ``chunks``: chunk text and position, owned by a document
        - ``chunk_vectors``: vec0 table whose rowid equals ``chunks.id``

    Example:
        >>> store = SQLiteVectorStore(":memory:", dimension=4)
        >>> store.initialize()
        >>> store.needs_update("docs/README.md", "abc")
        True
    """

    def __init__(self, db_path: str, dimension: int = DEFAULT_EMBEDDING_DIMENSION):
        """Initialize store settings (no I/O until ``initialize``).

        Args:
            db_path: SQLite database file, or ":memory:"
            dimension: Expected embedding dimension
        """
        if dimension <= 0:
            raise ValueError(f"dimension must be positive, got {dimension}")
        self.db_path = db_path
        self.dimension = dimension
        self._conn: sqlite3.Connection | None = None
        self._lock = ReadWriteLock()

    def __enter__(self) -> "SQLiteVectorStore":
        self.initialize()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self) -> None:
        """Open the database, create tables and reconcile the dimension.

        Raises:
            VectorStoreError: If the database cannot be opened or migrated
        """
        with self._lock.write(), self._schema_lock(), self._store_errors("initialize store"):
            if self._conn is None:
                self._conn = self._connect()

            with self._transaction() as conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS metadata (
                        key TEXT PRIMARY KEY,
                        value TEXT NOT NULL
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS documents (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        path TEXT UNIQUE NOT NULL,
                        title TEXT NOT NULL,
                        content_hash TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS chunks (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        doc_id INTEGER NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
                        chunk_index INTEGER NOT NULL,
                        chunk_text TEXT NOT NULL,
                        section_title TEXT NOT NULL DEFAULT '',
                        start_offset INTEGER NOT NULL DEFAULT 0,
                        end_offset INTEGER NOT NULL DEFAULT 0
                    )
                    """
                )
                conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_chunks_doc ON chunks(doc_id, chunk_index)"
                )

            self._reconcile_dimension(self.dimension)

    def set_dimension(self, dimension: int) -> bool:
        """Reconfigure the embedding dimension, migrating if it changed.

        A change drops every chunk and clears every document record so that
        all documents are re-embedded at the new width.

        Args:
            dimension: New embedding dimension

        Returns:
            True if the store was migrated
        """
        if dimension <= 0:
            raise ValueError(f"dimension must be positive, got {dimension}")
        with self._lock.write(), self._schema_lock(), self._store_errors("set dimension"):
            return self._reconcile_dimension(dimension)

    def close(self) -> None:
        """Close the database connection."""
        with self._lock.write():
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def upsert_document(self, path: str, title: str, content_hash: str) -> int:
        with self._lock.write(), self._store_errors("upsert document"):
            with self._transaction() as conn:
                return self._upsert_document(conn, path, title, content_hash)

    def get_document(self, path: str) -> DocumentRecord | None:
        with self._lock.read(), self._store_errors("get document"):
            row = self._require_connection().execute(
                "SELECT id, path, title, content_hash, updated_at FROM documents WHERE path = ?",
                (path,),
            ).fetchone()
        return self._document_from_row(row) if row else None

    def delete_document(self, path: str) -> bool:
        with self._lock.write(), self._store_errors("delete document"):
            with self._transaction() as conn:
                row = conn.execute("SELECT id FROM documents WHERE path = ?", (path,)).fetchone()
                if row is None:
                    return False
                self._delete_chunks(conn, row["id"])
                conn.execute("DELETE FROM documents WHERE id = ?", (row["id"],))

        logger.info(f"Deleted document {path} and its chunks")
        return True

    def needs_update(self, path: str, content_hash: str) -> bool:
        with self._lock.read(), self._store_errors("check content hash"):
            row = self._require_connection().execute(
                "SELECT content_hash FROM documents WHERE path = ?", (path,)
            ).fetchone()
        if row is None:
            return True
        return row["content_hash"] != content_hash

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    def insert_chunks(self, document_id: int, chunks: Sequence[EmbeddedChunk]) -> None:
        self._check_dimensions(chunk.embedding for chunk in chunks)
        with self._lock.write(), self._store_errors("insert chunks"):
            with self._transaction() as conn:
                self._replace_chunks(conn, document_id, chunks)

    def save_document(
        self, path: str, title: str, content_hash: str, chunks: Sequence[EmbeddedChunk]
    ) -> DocumentRecord:
        """Upsert a document and replace its chunks in one transaction.

        Searches never observe the new hash alongside old chunks, nor a
        document momentarily without chunks.

        Args:
            path: Unique document path
            title: Document title
            content_hash: Hex digest of the raw content
            chunks: Complete new chunk set (``document_id`` is ignored)

        Returns:
            The stored document record
        """
        self._check_dimensions(chunk.embedding for chunk in chunks)
        with self._lock.write(), self._store_errors("save document"):
            with self._transaction() as conn:
                document_id = self._upsert_document(conn, path, title, content_hash)
                self._replace_chunks(conn, document_id, chunks)
                row = conn.execute(
                    "SELECT id, path, title, content_hash, updated_at FROM documents WHERE id = ?",
                    (document_id,),
                ).fetchone()
        return self._document_from_row(row)

    def get_chunks(self, document_id: int, include_embeddings: bool = False) -> list[ChunkRecord]:
        with self._lock.read(), self._store_errors("get chunks"):
            conn = self._require_connection()
            rows = conn.execute(
                """
                SELECT id, doc_id, chunk_index, chunk_text, section_title
                FROM chunks
                WHERE doc_id = ?
                ORDER BY chunk_index
                """,
                (document_id,),
            ).fetchall()

            chunks = []
            for row in rows:
                embedding = None
                if include_embeddings:
                    vector_row = conn.execute(
                        "SELECT embedding FROM chunk_vectors WHERE rowid = ?", (row["id"],)
                    ).fetchone()
                    if vector_row is not None:
                        embedding = decode_vector(vector_row["embedding"])
                chunks.append(
                    ChunkRecord(
                        id=row["id"],
                        document_id=row["doc_id"],
                        chunk_index=row["chunk_index"],
                        text=row["chunk_text"],
                        section_title=row["section_title"],
                        embedding=embedding,
                    )
                )
        return chunks

    # ------------------------------------------------------------------
    # Search and stats
    # ------------------------------------------------------------------

    def search(self, query_embedding: Sequence[float], limit: int) -> list[SearchResult]:
        """Perform k-nearest-neighbor search over all chunks.

        Args:
            query_embedding: Query vector of the configured dimension
            limit: Maximum number of results (capped at 4096)

        Returns:
            Results ordered by ascending distance

        Raises:
            DimensionMismatchError: If the query vector has the wrong length
        """
        self._check_dimensions([query_embedding])
        if limit <= 0:
            return []

        with self._lock.read(), self._store_errors("search"):
            rows = self._require_connection().execute(
                """
                WITH knn AS (
                    SELECT rowid AS chunk_id, distance
                    FROM chunk_vectors
                    WHERE embedding MATCH ? AND k = ?
                )
                SELECT
                    c.id AS chunk_id,
                    c.doc_id,
                    c.chunk_index,
                    c.chunk_text,
                    c.section_title,
                    knn.distance,
                    d.id,
                    d.path,
                    d.title,
                    d.content_hash,
                    d.updated_at
                FROM knn
                JOIN chunks c ON c.id = knn.chunk_id
                JOIN documents d ON d.id = c.doc_id
                ORDER BY knn.distance
                """,
                (encode_vector(query_embedding), min(limit, MAX_KNN_LIMIT)),
            ).fetchall()

        return [
            SearchResult(
                chunk=ChunkRecord(
                    id=row["chunk_id"],
                    document_id=row["doc_id"],
                    chunk_index=row["chunk_index"],
                    text=row["chunk_text"],
                    section_title=row["section_title"],
                ),
                document=self._document_from_row(row),
                score=row["distance"],
            )
            for row in rows
        ]

    def stats(self) -> IndexStats:
        with self._lock.read(), self._store_errors("read stats"):
            conn = self._require_connection()
            documents = conn.execute("SELECT COUNT(*) FROM documents").fetchone()[0]
            chunks = conn.execute("SELECT COUNT(*) FROM chunks").fetchone()[0]
        return IndexStats(total_documents=documents, total_chunks=chunks, dimension=self.dimension)

    # ------------------------------------------------------------------
    # Internals (callers hold the appropriate lock)
    # ------------------------------------------------------------------

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.enable_load_extension(True)
        sqlite_vec.load(conn)
        conn.enable_load_extension(False)
        conn.execute("PRAGMA foreign_keys = ON")
        if self.db_path != IN_MEMORY:
            conn.execute("PRAGMA journal_mode = WAL")
        return conn

    def _require_connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise VectorStoreError("Vector store is not initialized", context=self.db_path)
        return self._conn

    def _schema_lock(self) -> Any:
        if self.db_path == IN_MEMORY:
            return nullcontext()
        return FileLock(f"{self.db_path}.lock", timeout=SCHEMA_LOCK_TIMEOUT_SECONDS)

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self._require_connection()
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")

    @contextmanager
    def _store_errors(self, action: str) -> Iterator[None]:
        try:
            yield
        except sqlite3.Error as e:
            raise VectorStoreError(f"failed to {action}: {e}", context=self.db_path) from e

    def _reconcile_dimension(self, dimension: int) -> bool:
        conn = self._require_connection()
        row = conn.execute("SELECT value FROM metadata WHERE key = 'dimension'").fetchone()
        stored = int(row["value"]) if row else None

        if stored == dimension:
            self.dimension = dimension
            conn.execute(self._vector_table_sql(dimension))
            return False

        if stored is None:
            logger.info(f"Creating vector storage with dimension {dimension}")
        else:
            logger.warning(
                f"Embedding dimension changed from {stored} to {dimension}, "
                f"re-indexing all documents"
            )

        with self._transaction():
            conn.execute("DROP TABLE IF EXISTS chunk_vectors")
            conn.execute("DELETE FROM chunks")
            conn.execute("DELETE FROM documents")
            conn.execute(self._vector_table_sql(dimension))
            conn.execute(
                """
                INSERT INTO metadata (key, value) VALUES ('dimension', ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
                """,
                (str(dimension),),
            )

        self.dimension = dimension
        return True

    @staticmethod
    def _vector_table_sql(dimension: int) -> str:
        return (
            "CREATE VIRTUAL TABLE IF NOT EXISTS chunk_vectors "
            f"USING vec0(embedding float[{int(dimension)}])"
        )

    @staticmethod
    def _upsert_document(
        conn: sqlite3.Connection, path: str, title: str, content_hash: str
    ) -> int:
        conn.execute(
            """
            INSERT INTO documents (path, title, content_hash, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(path) DO UPDATE SET
                title = excluded.title,
                content_hash = excluded.content_hash,
                updated_at = excluded.updated_at
            """,
            (path, title, content_hash, datetime.now(UTC).isoformat()),
        )
        row = conn.execute("SELECT id FROM documents WHERE path = ?", (path,)).fetchone()
        return int(row["id"])

    @staticmethod
    def _delete_chunks(conn: sqlite3.Connection, document_id: int) -> None:
        ids = conn.execute("SELECT id FROM chunks WHERE doc_id = ?", (document_id,)).fetchall()
        conn.executemany("DELETE FROM chunk_vectors WHERE rowid = ?", [(r["id"],) for r in ids])
        conn.execute("DELETE FROM chunks WHERE doc_id = ?", (document_id,))

    def _replace_chunks(
        self, conn: sqlite3.Connection, document_id: int, chunks: Sequence[EmbeddedChunk]
    ) -> None:
        self._delete_chunks(conn, document_id)
        for chunk in chunks:
            cursor = conn.execute(
                """
                INSERT INTO chunks
                    (doc_id, chunk_index, chunk_text, section_title, start_offset, end_offset)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    document_id,
                    chunk.chunk_index,
                    chunk.text,
                    chunk.section_title,
                    chunk.start_offset,
                    chunk.end_offset,
                ),
            )
            conn.execute(
                "INSERT INTO chunk_vectors (rowid, embedding) VALUES (?, ?)",
                (cursor.lastrowid, encode_vector(chunk.embedding)),
            )

    def _check_dimensions(self, vectors: Any) -> None:
        for vector in vectors:
            if len(vector) != self.dimension:
                raise DimensionMismatchError(
                    f"Expected {self.dimension} dimensions, got {len(vector)}"
                )

    @staticmethod
    def _document_from_row(row: sqlite3.Row) -> DocumentRecord:
        return DocumentRecord(
            id=row["id"],
            path=row["path"],
            title=row["title"],
            content_hash=row["content_hash"],
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )
