import re
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy import select
from sqlalchemy.sql import Select
from sqlalchemy.sql.elements import ColumnElement

from mod_users.core.errors import QueryParseError, TranslationError
from mod_users.core.logger import get_logger
from mod_users.models import TABLE_NAME_USERS, VIEW_NAME_USER_GROUPS_JOIN, relation_for
from mod_users.query import cql
from mod_users.query.sql import FieldMapping, compile_query
from mod_users.schemas.records import GROUP_SCHEMA, USER_SCHEMA

logger = get_logger(__name__)

GROUP_FIELD_PREFIX = "patronGroup."
GROUP_COLUMN_PREFIX = f"{VIEW_NAME_USER_GROUPS_JOIN}.group_jsonb."

_GROUP_FIELD_RE = re.compile(re.escape(GROUP_FIELD_PREFIX), re.IGNORECASE)

# one schema per json column the query may reach
USERS_FIELDS: FieldMapping = {
    f"{TABLE_NAME_USERS}.jsonb": USER_SCHEMA,
}
VIEW_FIELDS: FieldMapping = {
    f"{VIEW_NAME_USER_GROUPS_JOIN}.jsonb": USER_SCHEMA,
    f"{VIEW_NAME_USER_GROUPS_JOIN}.group_jsonb": GROUP_SCHEMA,
}

DEFAULT_LIMIT = 10


@dataclass
class QueryContext:
    table: str
    cql: Optional[str]
    predicate: Optional[ColumnElement]
    limit: Optional[int]
    offset: int
    order_by: list = field(default_factory=list)

    def statement(self, *columns: str) -> Select:
        """SELECT for this context; defaults to the record (jsonb) column."""
        try:
            relation = relation_for(self.table)
        except KeyError as exc:
            raise TranslationError(f"Unknown table or view '{self.table}'") from exc

        cols = [relation.c[name] for name in (columns or ("jsonb",))]
        stmt = select(*cols)
        if self.predicate is not None:
            stmt = stmt.where(self.predicate)
        if self.order_by:
            stmt = stmt.order_by(*self.order_by)
        if self.limit is not None:
            stmt = stmt.limit(self.limit)
        return stmt.offset(self.offset)


def references_group(query: Optional[str]) -> bool:
    return bool(query) and _GROUP_FIELD_RE.search(query) is not None


def get_table_name(query: Optional[str]) -> str:
    """
    The join view is only needed when the query reaches into the patron
    group; everything else runs against the plain users table.
    """
    if references_group(query):
        return VIEW_NAME_USER_GROUPS_JOIN
    return TABLE_NAME_USERS


def convert_query(query: Optional[str]) -> Optional[str]:
    if query is None:
        return None
    return _GROUP_FIELD_RE.sub(GROUP_COLUMN_PREFIX, query)


def _has_sort_clause(query: str) -> bool:
    # quoted terms are string tokens, so "sortby" as a value does not count
    return any(
        token.kind == "word" and token.value.lower() == "sortby"
        for token in cql.tokenize(query)
    )


def with_sort(query: Optional[str], order_by: Optional[str], order: Optional[str] = None) -> Optional[str]:
    """Append a sortBy clause built from orderBy/order request parameters."""
    if not order_by:
        return query
    modifier = "/sort.descending" if (order or "").lower() == "desc" else "/sort.ascending"
    base = query.strip() if query and query.strip() else "cql.allRecords=1"
    if _has_sort_clause(base):
        return f"{base} {order_by}{modifier}"
    return f"{base} sortBy {order_by}{modifier}"


def translate(query: Optional[str], limit: Optional[int] = DEFAULT_LIMIT, offset: int = 0) -> QueryContext:
    """
    Bind a CQL string to the users table or the users/groups view.

    A limit of None means no limit. Raises QueryParseError for malformed CQL
    or negative paging bounds.
    """
    if (limit is not None and limit < 0) or offset < 0:
        raise QueryParseError("limit and offset must not be negative", f"limit={limit} offset={offset}")

    table = get_table_name(query)

    if query is None or not query.strip():
        return QueryContext(table=table, cql=None, predicate=None, limit=limit, offset=offset)

    if table == VIEW_NAME_USER_GROUPS_JOIN:
        query = convert_query(query)
        mapping = VIEW_FIELDS
    else:
        mapping = USERS_FIELDS

    logger.debug("CQL on %s: %s", table, query)
    predicate, order_by = compile_query(cql.parse(query), mapping)
    return QueryContext(
        table=table,
        cql=query,
        predicate=predicate,
        limit=limit,
        offset=offset,
        order_by=order_by,
    )
