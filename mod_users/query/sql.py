"""
Compile a parsed CQL query into SQLAlchemy expressions over jsonb columns.

A field mapping tells which json column an index lives in and which JSON
schema describes it, e.g.

    {"users_groups_view.jsonb": USER_SCHEMA,
     "users_groups_view.group_jsonb": GROUP_SCHEMA}

An index starting with one of the keys is resolved against that column; a
bare index is resolved against the first entry.
"""
import operator
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Tuple

from sqlalchemy import Numeric, and_, cast, not_, or_, true
from sqlalchemy.sql.elements import ColumnElement

from mod_users.core.errors import QueryParseError, TranslationError
from mod_users.models import relation_for
from mod_users.query.cql import SERVER_CHOICE, Clause, CQLQuery, SortKey
from mod_users.schemas.records import field_schema

ALL_RECORDS = "cql.allRecords"

FieldMapping = Dict[str, dict]

_COMPARISONS = {
    "=": operator.eq,
    "==": operator.eq,
    "<>": operator.ne,
    "<": operator.lt,
    ">": operator.gt,
    "<=": operator.le,
    ">=": operator.ge,
}


# =====================================================
# CQL TERM HELPERS
# =====================================================

def _escape_like(ch: str) -> str:
    return "\\" + ch if ch in "%_\\" else ch


def has_wildcard(value: str) -> bool:
    escaped = False
    for ch in value:
        if escaped:
            escaped = False
        elif ch == "\\":
            escaped = True
        elif ch in "*?":
            return True
    return False


def like_pattern(value: str) -> str:
    """CQL masking (* and ?) to a LIKE pattern using backslash as escape."""
    out = []
    i = 0
    while i < len(value):
        ch = value[i]
        if ch == "\\" and i + 1 < len(value):
            out.append(_escape_like(value[i + 1]))
            i += 2
            continue
        if ch == "*":
            out.append("%")
        elif ch == "?":
            out.append("_")
        else:
            out.append(_escape_like(ch))
        i += 1
    return "".join(out)


def unescape(value: str) -> str:
    out = []
    i = 0
    while i < len(value):
        if value[i] == "\\" and i + 1 < len(value):
            out.append(value[i + 1])
            i += 2
            continue
        out.append(value[i])
        i += 1
    return "".join(out)


# =====================================================
# INDEX RESOLUTION
# =====================================================

class _Field:
    def __init__(self, column, path: List[str], schema: dict):
        self.column = column
        self.path = path
        self.schema = schema

    @property
    def type(self) -> str:
        return self.schema.get("type", "string")

    def json(self):
        if len(self.path) == 1:
            return self.column[self.path[0]]
        return self.column[tuple(self.path)]

    def text(self):
        return self.json().astext


def _column_for(prefix: str):
    try:
        relation_name, column_name = prefix.rsplit(".", 1)
        return relation_for(relation_name).c[column_name]
    except (KeyError, ValueError) as exc:
        raise TranslationError(f"Unknown relation or column '{prefix}'") from exc


def resolve_index(index: str, mapping: FieldMapping) -> _Field:
    if not mapping:
        raise TranslationError("Empty field mapping")

    for prefix in sorted(mapping, key=len, reverse=True):
        if index.lower().startswith(prefix.lower() + "."):
            path = index[len(prefix) + 1:]
            break
    else:
        prefix = next(iter(mapping))
        path = index

    names = path.split(".")
    if not all(names):
        raise QueryParseError("Malformed index", index)
    schema = field_schema(mapping[prefix], names)
    if schema is None:
        raise QueryParseError("Unknown field", index)
    return _Field(_column_for(prefix), names, schema)


# =====================================================
# CLAUSES
# =====================================================

def _boolean_clause(fld: _Field, clause: Clause):
    value = clause.term.lower()
    if value not in ("true", "false"):
        raise QueryParseError("Expected true or false", clause.term)
    if clause.relation in ("=", "==", "adj"):
        return fld.text() == value
    if clause.relation == "<>":
        return fld.text() != value
    raise QueryParseError(f"Relation {clause.relation} not supported for boolean field", clause.index)


def _number_clause(fld: _Field, clause: Clause):
    try:
        number = Decimal(clause.term)
    except InvalidOperation:
        raise QueryParseError("Expected a number", clause.term)
    if clause.relation not in _COMPARISONS:
        raise QueryParseError(f"Relation {clause.relation} not supported for numeric field", clause.index)
    return _COMPARISONS[clause.relation](cast(fld.text(), Numeric), number)


def _array_clause(fld: _Field, clause: Clause):
    if clause.relation not in ("=", "==", "adj"):
        raise QueryParseError(f"Relation {clause.relation} not supported for array field", clause.index)
    return fld.json().contains([unescape(clause.term)])


def _string_clause(fld: _Field, clause: Clause):
    relation = clause.relation
    term = clause.term
    expr = fld.text()

    if relation == "==":
        if has_wildcard(term):
            return expr.like(like_pattern(term), escape="\\")
        return expr == unescape(term)

    if relation in ("=", "adj"):
        # field="" matches every record that has the field
        if term == "":
            return expr.isnot(None)
        return expr.ilike(like_pattern(term), escape="\\")

    if relation in ("all", "any"):
        words = term.split()
        if not words:
            raise QueryParseError("Empty search term", clause.index)
        parts = [expr.ilike("%" + like_pattern(w) + "%", escape="\\") for w in words]
        return and_(*parts) if relation == "all" else or_(*parts)

    if relation in _COMPARISONS:
        return _COMPARISONS[relation](expr, unescape(term))
    raise QueryParseError(f"Unsupported relation {relation}", clause.index)


def compile_clause(clause: Clause, mapping: FieldMapping) -> ColumnElement:
    if clause.index.lower() == ALL_RECORDS.lower():
        return true()
    if clause.index == SERVER_CHOICE:
        raise QueryParseError("A search index is required", clause.term)

    fld = resolve_index(clause.index, mapping)
    if fld.type == "boolean":
        return _boolean_clause(fld, clause)
    if fld.type in ("integer", "number"):
        return _number_clause(fld, clause)
    if fld.type == "array":
        return _array_clause(fld, clause)
    if fld.type == "object":
        raise QueryParseError("Cannot search an object field", clause.index)
    return _string_clause(fld, clause)


def compile_node(node, mapping: FieldMapping) -> ColumnElement:
    if isinstance(node, Clause):
        return compile_clause(node, mapping)
    left = compile_node(node.left, mapping)
    right = compile_node(node.right, mapping)
    if node.op == "and":
        return and_(left, right)
    if node.op == "or":
        return or_(left, right)
    return and_(left, not_(right))


def compile_sort(keys: List[SortKey], mapping: FieldMapping) -> list:
    order_by = []
    for key in keys:
        fld = resolve_index(key.index, mapping)
        expr = cast(fld.text(), Numeric) if fld.type in ("integer", "number") else fld.text()
        order_by.append(expr.desc() if key.descending else expr.asc())
    return order_by


def compile_query(query: CQLQuery, mapping: FieldMapping) -> Tuple[ColumnElement, list]:
    """Return (where clause, order_by list) for a parsed query."""
    return compile_node(query.root, mapping), compile_sort(query.sort, mapping)
