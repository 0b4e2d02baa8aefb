import structlog
from typing import List, Optional, Sequence
from psycopg2 import extras
from psycopg2.pool import ThreadedConnectionPool
from contextlib import contextmanager

from app.core.errors import DataIntegrityError
from app.core.reference_store import NameHit, ReferenceStore, VectorHit
from app.core.utils import deserialize_embedding, serialize_embedding
from app.models.media import EmbeddingSpace, MediaType, ReferenceItem

logger = structlog.get_logger()

# Connection pool configuration
MIN_CONNECTIONS = 1
MAX_CONNECTIONS = 10
CONNECT_TIMEOUT_SECONDS = 2

SCHEMA_SQL = """
CREATE EXTENSION IF NOT EXISTS vector;

CREATE TABLE IF NOT EXISTS protected_content (
    id SERIAL PRIMARY KEY,
    label TEXT NOT NULL,
    embedding vector NOT NULL,
    embedding_space TEXT NOT NULL,
    dimensions INTEGER NOT NULL,
    content_type TEXT NOT NULL DEFAULT 'image',
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    CONSTRAINT protected_content_dimensions_check CHECK (vector_dims(embedding) = dimensions)
);

CREATE INDEX IF NOT EXISTS idx_protected_content_space
ON protected_content (embedding_space);
"""

def space_index_sql(space: EmbeddingSpace) -> str:
    """HNSW index for one embedding space; pgvector indexes need a fixed width."""
    index_name = "idx_protected_content_hnsw_" + space.name.replace("-", "_")
    return f"""
    CREATE INDEX IF NOT EXISTS {index_name}
    ON protected_content USING hnsw ((embedding::vector({space.dimensions})) vector_cosine_ops)
    WHERE embedding_space = '{space.name}';
    """

def _escape_like(token: str) -> str:
    return token.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class PgVectorReferenceStore(ReferenceStore):
    """Reference store backed by PostgreSQL with the pgvector extension."""

    def __init__(self, dsn: str, space: EmbeddingSpace, statement_timeout_ms: int = 5000,
                 min_connections: int = MIN_CONNECTIONS, max_connections: int = MAX_CONNECTIONS):
        super().__init__(space)
        try:
            self._pool = ThreadedConnectionPool(
                min_connections,
                max_connections,
                dsn,
                connect_timeout=CONNECT_TIMEOUT_SECONDS,
                options=f"-c statement_timeout={statement_timeout_ms}",
            )
            logger.info("Reference store connection pool initialized",
                       min_connections=min_connections,
                       max_connections=max_connections,
                       space=space.name)
        except Exception as e:
            logger.error("Failed to initialize reference store connection pool", error=str(e))
            raise

    @contextmanager
    def get_connection(self):
        """Context manager for pooled connections with automatic cleanup."""
        conn = None
        try:
            conn = self._pool.getconn()
            yield conn
        except Exception as e:
            if conn:
                conn.rollback()
            logger.error("Database operation failed", error=str(e))
            raise
        finally:
            if conn:
                self._pool.putconn(conn)

    def insert(self, label: str, vector: Sequence[float], space: EmbeddingSpace,
               content_type: MediaType = MediaType.IMAGE) -> ReferenceItem:
        embedding = self.ensure_compatible(vector, space)
        sql = """
        INSERT INTO protected_content (label, embedding, embedding_space, dimensions, content_type)
        VALUES (%s, %s::vector, %s, %s, %s)
        RETURNING id, created_at
        """
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, (label, serialize_embedding(embedding), space.name,
                                  space.dimensions, content_type.value))
                reference_id, created_at = cur.fetchone()
                conn.commit()

        logger.debug("Reference item inserted", reference_id=reference_id, label=label, space=space.name)
        return ReferenceItem(
            id=reference_id,
            label=label,
            embedding=embedding,
            space=self.space,
            content_type=content_type,
            created_at=created_at,
        )

    def query_by_vector(self, vector: Sequence[float], space: EmbeddingSpace,
                        threshold: float, limit: int) -> List[VectorHit]:
        embedding = self.ensure_compatible(vector, space)
        literal = serialize_embedding(embedding)
        # Same fixed-width cast as the partial HNSW index
        column = f"embedding::vector({space.dimensions})"
        sql = f"""
        SELECT id, label, 1 - ({column} <=> %s::vector) AS similarity
        FROM protected_content
        WHERE embedding_space = %s
          AND ({column} <=> %s::vector) <> 'NaN'::float8
          AND 1 - ({column} <=> %s::vector) > %s
        ORDER BY similarity DESC, id
        LIMIT %s
        """
        try:
            with self.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(sql, (literal, space.name, literal, literal, threshold, limit))
                    rows = cur.fetchall()
        except Exception as e:
            logger.error("Vector query failed", space=space.name, error=str(e))
            raise

        logger.debug("Vector query completed", results_count=len(rows), threshold=threshold)
        return [(row[0], row[1], float(row[2])) for row in rows]

    def query_by_name(self, token: str, limit: int) -> List[NameHit]:
        sql = """
        SELECT DISTINCT id, label
        FROM protected_content
        WHERE embedding_space = %s
          AND LOWER(label) LIKE %s ESCAPE '\\'
        ORDER BY id
        LIMIT %s
        """
        pattern = f"%{_escape_like(token.lower())}%"
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, (self.space.name, pattern, limit))
                rows = cur.fetchall()

        logger.debug("Name query completed", token=token, results_count=len(rows))
        return [(row[0], row[1]) for row in rows]

    def get(self, reference_id: int) -> Optional[ReferenceItem]:
        sql = """
        SELECT id, label, embedding::text AS embedding, embedding_space, content_type, created_at
        FROM protected_content
        WHERE id = %s
        """
        with self.get_connection() as conn:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                cur.execute(sql, (reference_id,))
                row = cur.fetchone()

        if row is None:
            return None
        if row["embedding_space"] != self.space.name:
            raise DataIntegrityError(
                f"Reference {reference_id} belongs to {row['embedding_space']}, not {self.space.name}"
            )
        return ReferenceItem(
            id=row["id"],
            label=row["label"],
            embedding=deserialize_embedding(row["embedding"]),
            space=self.space,
            content_type=MediaType(row["content_type"]),
            created_at=row["created_at"],
        )

    def count(self) -> int:
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT COUNT(*) FROM protected_content WHERE embedding_space = %s",
                            (self.space.name,))
                return cur.fetchone()[0]

    def check_connection(self) -> bool:
        """Check if the database connection is working."""
        try:
            with self.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1")
                    result = cur.fetchone()
            return result[0] == 1
        except Exception as e:
            logger.error("Database connection check failed", error=str(e))
            return False

    def close(self) -> None:
        self._pool.closeall()
        logger.info("Reference store connection pool closed")
