from __future__ import annotations

import copy
import logging
import uuid
from threading import RLock
from typing import Any, Callable, Dict, List, Optional

from supabase import FunctionsError, create_client

from .errors import FunctionError, GatewayError, RemoteError
from .timeutil import Clock, to_iso, utcnow


logger = logging.getLogger(__name__)

Row = Dict[str, Any]
Filters = Optional[Dict[str, Any]]
RemoteFunction = Callable[[Dict[str, Any]], Dict[str, Any]]

# what ai-chat answers with when the body did not make it through
STATUS_CODES = {
    429: GatewayError.RATE_LIMITED,
    402: GatewayError.PAYMENT_REQUIRED,
}


class RemoteStore:
    """Collaborator contract for the hosted backend.

    Named collections (`profiles`, `conversations`, `messages`, `drafts`, ...)
    with equality filters and single-column ordering, plus named remote
    procedures. Every failure surfaces as RemoteError.
    """

    def insert(self, table: str, row: Row) -> Row:
        raise NotImplementedError

    def select(self, table: str, filters: Filters = None, order_by: Optional[str] = None,
               desc: bool = False) -> List[Row]:
        raise NotImplementedError

    def update(self, table: str, values: Row, filters: Filters = None) -> List[Row]:
        raise NotImplementedError

    def delete(self, table: str, filters: Filters = None) -> int:
        raise NotImplementedError

    def invoke(self, function: str, body: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    def select_one(self, table: str, filters: Filters = None) -> Optional[Row]:
        rows = self.select(table, filters)
        return rows[0] if rows else None


def _matches(row: Row, filters: Filters) -> bool:
    if not filters:
        return True
    return all(row.get(k) == v for k, v in filters.items())


def _sort_key(column: str):
    # rows missing the column sort first, like NULLS FIRST
    def key(row: Row):
        v = row.get(column)
        return (v is not None, v if v is not None else "")
    return key


class InMemoryRemoteStore(RemoteStore):
    """Process-local backend used for development, demos and tests."""

    def __init__(self, clock: Clock = utcnow) -> None:
        self._lock = RLock()
        self._tables: Dict[str, List[Row]] = {}
        self._functions: Dict[str, RemoteFunction] = {}
        self._clock = clock

    def register_function(self, name: str, handler: RemoteFunction) -> None:
        self._functions[name] = handler

    def insert(self, table: str, row: Row) -> Row:
        now = to_iso(self._clock())
        record = copy.deepcopy(row)
        record.setdefault("id", str(uuid.uuid4()))
        record.setdefault("created_at", now)
        record.setdefault("updated_at", now)
        with self._lock:
            rows = self._tables.setdefault(table, [])
            if any(r.get("id") == record["id"] for r in rows):
                raise RemoteError(f"duplicate key value violates unique constraint on {table}.id", table)
            rows.append(record)
            return copy.deepcopy(record)

    def select(self, table: str, filters: Filters = None, order_by: Optional[str] = None,
               desc: bool = False) -> List[Row]:
        with self._lock:
            rows = [copy.deepcopy(r) for r in self._tables.get(table, []) if _matches(r, filters)]
        if order_by:
            rows.sort(key=_sort_key(order_by), reverse=desc)
        return rows

    def update(self, table: str, values: Row, filters: Filters = None) -> List[Row]:
        out: List[Row] = []
        with self._lock:
            for r in self._tables.get(table, []):
                if _matches(r, filters):
                    r.update(copy.deepcopy(values))
                    out.append(copy.deepcopy(r))
        return out

    def delete(self, table: str, filters: Filters = None) -> int:
        with self._lock:
            rows = self._tables.get(table, [])
            keep = [r for r in rows if not _matches(r, filters)]
            self._tables[table] = keep
            return len(rows) - len(keep)

    def invoke(self, function: str, body: Dict[str, Any]) -> Dict[str, Any]:
        handler = self._functions.get(function)
        if handler is None:
            raise RemoteError(f"Function not found: {function}")
        try:
            return handler(body)
        except FunctionError as e:
            raise RemoteError(e.message, status=e.status, payload=e.payload) from e

    def tables(self) -> List[str]:
        with self._lock:
            return sorted(self._tables)


def _function_payload(e: FunctionsError) -> Dict[str, Any]:
    """Recover the JSON body of a failed edge function call.

    supabase-py keeps only the status and the `error` text on the exception;
    the full body is still on the HTTP response it was raised from.
    """
    payload: Dict[str, Any] = {"error": e.message}
    response = getattr(e.__cause__, "response", None)
    if response is not None:
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            payload.update(body)
    if "code" not in payload and e.status in STATUS_CODES:
        payload["code"] = STATUS_CODES[e.status]
    return payload


class SupabaseRemoteStore(RemoteStore):
    """RemoteStore backed by a hosted Supabase project."""

    def __init__(self, url: str, key: str) -> None:
        self._client = create_client(url, key)

    def _query(self, query, filters: Filters):
        for k, v in (filters or {}).items():
            query = query.eq(k, v)
        return query

    def insert(self, table: str, row: Row) -> Row:
        try:
            res = self._client.table(table).insert(row).execute()
        except Exception as e:
            raise RemoteError(str(e), table) from e
        if not res.data:
            raise RemoteError(f"insert into {table} returned no row", table)
        return res.data[0]

    def select(self, table: str, filters: Filters = None, order_by: Optional[str] = None,
               desc: bool = False) -> List[Row]:
        try:
            query = self._query(self._client.table(table).select("*"), filters)
            if order_by:
                query = query.order(order_by, desc=desc)
            return list(query.execute().data or [])
        except Exception as e:
            raise RemoteError(str(e), table) from e

    def update(self, table: str, values: Row, filters: Filters = None) -> List[Row]:
        try:
            return list(self._query(self._client.table(table).update(values), filters).execute().data or [])
        except Exception as e:
            raise RemoteError(str(e), table) from e

    def delete(self, table: str, filters: Filters = None) -> int:
        try:
            return len(self._query(self._client.table(table).delete(), filters).execute().data or [])
        except Exception as e:
            raise RemoteError(str(e), table) from e

    def invoke(self, function: str, body: Dict[str, Any]) -> Dict[str, Any]:
        try:
            return self._client.functions.invoke(function, invoke_options={"body": body, "responseType": "json"})
        except FunctionsError as e:
            raise RemoteError(e.message, status=e.status, payload=_function_payload(e)) from e
        except Exception as e:
            raise RemoteError(str(e)) from e
