# utils/db.py
"""
Backend Gateway

Version: 2.0.0
Features:
- Singleton engine with thread-safe double-checked locking
- Connection pooling with auto-reconnect
- Health check utilities
- Table-oriented select / insert / update / delete helpers
  (eq, neq, in and OR filters, ordering, offset/limit windows)
- Every failure surfaces as BackendError carrying the backend's message
"""

import logging
import threading
import uuid
from datetime import date, datetime
from contextlib import contextmanager
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import pandas as pd
from sqlalchemy import (
    and_, column, create_engine, delete, func, insert, literal_column,
    or_, select, table, text, update,
)
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.pool import QueuePool

from .config import config

logger = logging.getLogger(__name__)


class BackendError(Exception):
    """Generic backend failure carrying the backend's message."""

    def __init__(self, context: str, message: Optional[str] = None):
        self.context = context
        self.message = message or f"Backend {context} failed"
        super().__init__(self.message)


# ==================== SINGLETON ENGINE ====================

_engine = None
_engine_lock = threading.Lock()


def get_db_engine():
    """
    Get SQLAlchemy engine for the backend (singleton pattern)

    Thread-safe implementation using double-checked locking.

    Returns:
        SQLAlchemy Engine instance
    """
    global _engine

    if _engine is None:
        with _engine_lock:
            if _engine is None:
                _engine = _create_engine()

    return _engine


def set_db_engine(engine):
    """Install an externally created engine (tests, alternate backends)."""
    global _engine

    with _engine_lock:
        _engine = engine


def _create_engine():
    """Create new database engine with configured settings"""
    url = config.get_db_url()
    app_config = config.app_config

    logger.info(f"🔌 Creating backend engine: {config.get_masked_db_url()}")

    pool_size = app_config.get("DB_POOL_SIZE", 5)
    pool_recycle = app_config.get("DB_POOL_RECYCLE", 3600)

    engine = create_engine(
        url,
        poolclass=QueuePool,
        pool_size=pool_size,
        max_overflow=10,
        pool_timeout=30,
        pool_recycle=pool_recycle,
        pool_pre_ping=True,  # Auto-reconnect on stale connections
        echo=False
    )

    logger.info(f"✅ Backend engine created (pool_size={pool_size}, recycle={pool_recycle}s)")

    return engine


# ==================== CONNECTION MANAGEMENT ====================

def check_db_connection() -> Tuple[bool, Optional[str]]:
    """
    Check if backend connection is healthy

    Returns:
        Tuple of (is_connected: bool, error_message: str or None)
    """
    try:
        engine = get_db_engine()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True, None
    except OperationalError as e:
        logger.error(f"❌ Backend connection failed: {e}")
        return False, "Cannot connect to the backend. Please check your network connection."
    except Exception as e:
        logger.error(f"❌ Backend error: {e}")
        return False, f"Backend error: {str(e)}"


def reset_db_engine():
    """
    Reset the engine (force new connection on next call)
    """
    global _engine

    with _engine_lock:
        if _engine is not None:
            try:
                _engine.dispose()
                logger.info("🔄 Backend engine disposed")
            except Exception as e:
                logger.error(f"Error disposing engine: {e}")
            _engine = None


@contextmanager
def backend_call(context: str = "operation"):
    """
    Wrap a backend call: SQLAlchemy failures become BackendError.

    Usage:
        with backend_call("load cases"):
            ...
    """
    try:
        yield
    except BackendError:
        raise
    except SQLAlchemyError as e:
        message = str(getattr(e, 'orig', None) or e)
        logger.error(f"Backend {context} failed: {message}")
        raise BackendError(context, message) from e


@contextmanager
def get_transaction():
    """
    Context manager for a single transactional request

    Usage:
        with get_transaction() as conn:
            insert_rows("cases", [...], conn=conn)
            insert_rows("case_products", [...], conn=conn)
            # Auto-commit on success, auto-rollback on exception
    """
    engine = get_db_engine()
    with backend_call("transaction"):
        with engine.begin() as conn:
            yield conn


# ==================== STATEMENT BUILDING ====================

def _table(name: str, columns: Iterable[str] = ()):
    return table(name, *[column(c) for c in columns])


def _where_clauses(
    filters: Optional[Dict[str, Any]] = None,
    exclude: Optional[Dict[str, Any]] = None,
    in_filters: Optional[Dict[str, Sequence[Any]]] = None,
    any_of: Optional[Sequence[Tuple[str, Any]]] = None,
) -> List:
    clauses = []

    for name, value in (filters or {}).items():
        col = column(name)
        clauses.append(col.is_(None) if value is None else col == value)

    for name, value in (exclude or {}).items():
        col = column(name)
        if value is None:
            clauses.append(col.is_not(None))
        else:
            # NULL != value is unknown in SQL; keep NULL rows
            clauses.append(or_(col.is_(None), col != value))

    for name, values in (in_filters or {}).items():
        values = list(values)
        if not values:
            # IN () matches nothing
            clauses.append(literal_column("1") == literal_column("0"))
        else:
            clauses.append(column(name).in_(values))

    if any_of:
        clauses.append(or_(*[column(name) == value for name, value in any_of]))

    return clauses


def _run_dml(stmt, conn=None, context: str = "operation") -> int:
    """Execute a write statement and return its rowcount."""
    with backend_call(context):
        if conn is not None:
            return conn.execute(stmt).rowcount
        with get_db_engine().begin() as own_conn:
            return own_conn.execute(stmt).rowcount


def _to_frame(result, columns: Optional[Sequence[str]]) -> pd.DataFrame:
    keys = list(result.keys())
    rows = result.fetchall()
    if not rows:
        return pd.DataFrame(columns=list(columns) if columns else keys)
    return pd.DataFrame([tuple(r) for r in rows], columns=keys)


# ==================== QUERY HELPERS ====================

def select_rows(
    table_name: str,
    columns: Optional[Sequence[str]] = None,
    filters: Optional[Dict[str, Any]] = None,
    exclude: Optional[Dict[str, Any]] = None,
    in_filters: Optional[Dict[str, Sequence[Any]]] = None,
    any_of: Optional[Sequence[Tuple[str, Any]]] = None,
    order_by: Optional[str] = None,
    descending: bool = False,
    limit: Optional[int] = None,
    offset: Optional[int] = None,
    context: Optional[str] = None,
    conn=None,
) -> pd.DataFrame:
    """
    Select rows from a table or view.

    Args:
        table_name: Backend table or view
        columns: Columns to return (all when None)
        filters: column == value (None means IS NULL)
        exclude: column != value
        in_filters: column IN values
        any_of: OR-combined (column, value) equality pairs
        order_by: Ordering column
        descending: Order direction
        limit / offset: Window

    Returns:
        DataFrame (empty with requested columns when nothing matched)
    """
    context = context or f"select {table_name}"
    tbl = _table(table_name)
    cols = [column(c) for c in columns] if columns else [literal_column("*")]

    stmt = select(*cols).select_from(tbl)
    clauses = _where_clauses(filters, exclude, in_filters, any_of)
    if clauses:
        stmt = stmt.where(and_(*clauses))
    if order_by:
        stmt = stmt.order_by(column(order_by).desc() if descending else column(order_by).asc())
    if limit is not None:
        stmt = stmt.limit(limit)
    if offset:
        stmt = stmt.offset(offset)

    with backend_call(context):
        if conn is not None:
            return _to_frame(conn.execute(stmt), columns)
        with get_db_engine().connect() as own_conn:
            return _to_frame(own_conn.execute(stmt), columns)


def select_all_batched(
    table_name: str,
    batch_size: Optional[int] = None,
    **kwargs
) -> pd.DataFrame:
    """
    Select every matching row using offset/limit windows.

    Each request is capped at FETCH_BATCH_SIZE (1000) rows; windows are
    fetched until a short page comes back.
    """
    cap = config.get_app_setting("FETCH_BATCH_SIZE", 1000)
    batch_size = min(batch_size or cap, cap)
    kwargs.pop('limit', None)
    kwargs.pop('offset', None)

    frames = []
    offset = 0
    while True:
        page = select_rows(table_name, limit=batch_size, offset=offset, **kwargs)
        if not page.empty:
            frames.append(page)
        if len(page) < batch_size:
            break
        offset += batch_size

    if not frames:
        columns = kwargs.get('columns')
        return pd.DataFrame(columns=list(columns) if columns else [])

    logger.info(f"Loaded {table_name}: {sum(len(f) for f in frames):,} rows in {len(frames)} batch(es)")
    return pd.concat(frames, ignore_index=True)


def select_one(table_name: str, **kwargs) -> Optional[Dict[str, Any]]:
    """
    Select at most one row (maybe-single semantics).

    Returns:
        Row as dict, or None when nothing matched

    Raises:
        BackendError: when more than one row matched
    """
    context = kwargs.pop('context', None) or f"select one {table_name}"
    kwargs['limit'] = 2
    df = select_rows(table_name, context=context, **kwargs)
    if df.empty:
        return None
    if len(df) > 1:
        logger.error(f"Backend {context} failed: multiple rows returned")
        raise BackendError(context, "Multiple rows returned for a single-row request")
    row = df.iloc[0].to_dict()
    return {k: (None if _is_missing(v) else v) for k, v in row.items()}


def count_rows(
    table_name: str,
    filters: Optional[Dict[str, Any]] = None,
    in_filters: Optional[Dict[str, Sequence[Any]]] = None,
    context: Optional[str] = None,
) -> int:
    """Count matching rows."""
    context = context or f"count {table_name}"
    stmt = select(func.count()).select_from(_table(table_name))
    clauses = _where_clauses(filters, None, in_filters)
    if clauses:
        stmt = stmt.where(and_(*clauses))

    with backend_call(context):
        with get_db_engine().connect() as conn:
            return int(conn.execute(stmt).scalar() or 0)


def insert_rows(
    table_name: str,
    rows: List[Dict[str, Any]],
    context: Optional[str] = None,
    conn=None,
) -> List[Any]:
    """
    Insert rows, assigning string UUID ids to rows without one.

    Returns:
        List of inserted ids (same order as rows)
    """
    context = context or f"insert {table_name}"
    if not rows:
        return []

    prepared = []
    for row in rows:
        row = _serialize(row)
        if row.get('id') is None:
            row['id'] = str(uuid.uuid4())
        prepared.append(row)

    def _execute(c):
        for row in prepared:
            stmt = insert(_table(table_name, row.keys())).values(**row)
            c.execute(stmt)

    with backend_call(context):
        if conn is not None:
            _execute(conn)
        else:
            with get_db_engine().begin() as own_conn:
                _execute(own_conn)

    return [row['id'] for row in prepared]


def update_rows(
    table_name: str,
    values: Dict[str, Any],
    filters: Optional[Dict[str, Any]] = None,
    in_filters: Optional[Dict[str, Sequence[Any]]] = None,
    context: Optional[str] = None,
    conn=None,
) -> int:
    """
    Update matching rows.

    Returns:
        Number of affected rows
    """
    context = context or f"update {table_name}"
    clauses = _where_clauses(filters, None, in_filters)
    if not clauses:
        raise BackendError(context, "Refusing to update without a filter")

    values = _serialize(values)
    stmt = update(_table(table_name, values.keys())).where(and_(*clauses)).values(**values)
    return _run_dml(stmt, conn, context)


def delete_rows(
    table_name: str,
    filters: Optional[Dict[str, Any]] = None,
    in_filters: Optional[Dict[str, Sequence[Any]]] = None,
    context: Optional[str] = None,
    conn=None,
) -> int:
    """
    Delete matching rows.

    Returns:
        Number of affected rows
    """
    context = context or f"delete {table_name}"
    clauses = _where_clauses(filters, None, in_filters)
    if not clauses:
        raise BackendError(context, "Refusing to delete without a filter")

    stmt = delete(_table(table_name)).where(and_(*clauses))
    return _run_dml(stmt, conn, context)


def _serialize(values: Dict[str, Any]) -> Dict[str, Any]:
    """Dates and timestamps travel as ISO strings."""
    out = {}
    for key, value in values.items():
        if isinstance(value, datetime):
            value = value.isoformat(sep=' ', timespec='seconds')
        elif isinstance(value, date):
            value = value.isoformat()
        out[key] = value
    return out


def _is_missing(value: Any) -> bool:
    try:
        return value is None or bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


# ==================== EXPORTS ====================

__all__ = [
    'BackendError',
    'get_db_engine',
    'set_db_engine',
    'check_db_connection',
    'reset_db_engine',
    'backend_call',
    'get_transaction',
    'select_rows',
    'select_all_batched',
    'select_one',
    'count_rows',
    'insert_rows',
    'update_rows',
    'delete_rows',
]
