from decimal import Decimal

import pytest

from mod_users.core.errors import QueryParseError, TranslationError
from mod_users.models import TABLE_NAME_USERS, VIEW_NAME_USER_GROUPS_JOIN
from mod_users.query.sql import has_wildcard, like_pattern, resolve_index
from mod_users.schemas.records import USER_SCHEMA
from mod_users.services.query_translator import (
    QueryContext,
    convert_query,
    get_table_name,
    translate,
    with_sort,
)

from conftest import compile_sql


@pytest.mark.parametrize(
    "query",
    ["patronGroup.id==5", "PATRONGROUP.group==staff", "active==true and patrongroup.desc=x"],
)
def test_group_reference_in_any_case_selects_view(query):
    assert get_table_name(query) == VIEW_NAME_USER_GROUPS_JOIN


@pytest.mark.parametrize("query", [None, "", "active==true", "patronGroup==abc"])
def test_without_group_reference_selects_users_table(query):
    assert get_table_name(query) == TABLE_NAME_USERS


def test_convert_query_rewrites_every_occurrence():
    converted = convert_query('patronGroup.group==staff or PatronGroup.desc="x"')

    assert converted == (
        "users_groups_view.group_jsonb.group==staff or "
        'users_groups_view.group_jsonb.desc="x"'
    )


def test_patron_group_id_round_trip():
    ctx = translate("patronGroup.id==5", limit=10, offset=0)

    assert ctx.table == VIEW_NAME_USER_GROUPS_JOIN
    assert ctx.cql == "users_groups_view.group_jsonb.id==5"

    sql, params = compile_sql(ctx)
    assert "users_groups_view.group_jsonb" in sql
    assert "FROM users_groups_view" in sql
    assert "id" in params
    assert "5" in params


def test_users_query_is_left_untouched():
    ctx = translate("username==jdoe", limit=5, offset=2)

    assert ctx.table == TABLE_NAME_USERS
    assert ctx.cql == "username==jdoe"

    sql, params = compile_sql(ctx)
    assert "users.jsonb" in sql
    assert "users_groups_view" not in sql
    assert "jdoe" in params
    assert 5 in params and 2 in params


@pytest.mark.parametrize("query", [None, "", "   "])
def test_empty_query_means_no_predicate(query):
    ctx = translate(query, limit=25, offset=50)

    assert ctx.table == TABLE_NAME_USERS
    assert ctx.predicate is None
    assert ctx.limit == 25
    assert ctx.offset == 50

    sql, _ = compile_sql(ctx)
    assert "WHERE" not in sql


def test_view_query_can_mix_user_and_group_fields():
    ctx = translate("active==true and patronGroup.group==staff", limit=10, offset=0)

    sql, params = compile_sql(ctx)
    assert "users_groups_view.jsonb" in sql
    assert "users_groups_view.group_jsonb" in sql
    assert "true" in params
    assert "staff" in params


def test_unknown_field_is_a_parse_error():
    with pytest.raises(QueryParseError) as excinfo:
        translate("nickname==bob", limit=10, offset=0)

    assert excinfo.value.fragment == "nickname"


def test_unknown_group_field_is_a_parse_error():
    with pytest.raises(QueryParseError):
        translate("patronGroup.colour==red", limit=10, offset=0)


def test_malformed_query_is_a_parse_error():
    with pytest.raises(QueryParseError):
        translate("active==true and (", limit=10, offset=0)


def test_boolean_field_requires_boolean_term():
    with pytest.raises(QueryParseError):
        translate("active==maybe", limit=10, offset=0)


def test_negative_paging_is_rejected():
    with pytest.raises(QueryParseError):
        translate("active==true", limit=-1, offset=0)
    with pytest.raises(QueryParseError):
        translate(None, limit=10, offset=-5)


def test_no_limit():
    ctx = translate("active==true", limit=None)

    sql, _ = compile_sql(ctx)
    assert "LIMIT" not in sql


def test_numeric_group_field_is_cast():
    ctx = translate("patronGroup.expirationOffsetInDays>=30", limit=10, offset=0)

    sql, params = compile_sql(ctx)
    assert "NUMERIC" in sql
    assert Decimal("30") in params


def test_wildcards_become_like_patterns():
    ctx = translate("username==jd*", limit=10, offset=0)

    sql, params = compile_sql(ctx)
    assert "LIKE" in sql
    assert "jd%" in params


def test_equals_is_case_insensitive():
    ctx = translate('personal.lastName="doe"', limit=10, offset=0)

    sql, params = compile_sql(ctx)
    assert "ILIKE" in sql.upper()
    assert "doe" in params


def test_all_records():
    ctx = translate("cql.allRecords=1", limit=10, offset=0)

    sql, _ = compile_sql(ctx)
    assert "true" in sql.lower()


def test_sort_by_adds_order_by():
    ctx = translate("active==true sortBy username/sort.descending", limit=10, offset=0)

    sql, _ = compile_sql(ctx)
    assert "ORDER BY" in sql
    assert "DESC" in sql


def test_with_sort_builds_sort_clause():
    assert with_sort("active==true", "username", "asc") == (
        "active==true sortBy username/sort.ascending"
    )
    assert with_sort(None, "username", "desc") == (
        "cql.allRecords=1 sortBy username/sort.descending"
    )
    assert with_sort("active==true sortBy barcode", "username", "desc") == (
        "active==true sortBy barcode username/sort.descending"
    )
    assert with_sort("active==true", None) == "active==true"


def test_quoted_sortby_term_is_not_a_sort_clause():
    query = with_sort('username=="sortby"', "barcode", "asc")

    assert query == 'username=="sortby" sortBy barcode/sort.ascending'
    ctx = translate(query)
    assert len(ctx.order_by) == 1


def test_like_pattern_escapes():
    assert like_pattern("a*b?c") == "a%b_c"
    assert like_pattern(r"100\*") == "100*"
    assert like_pattern("50%_off") == "50\\%\\_off"
    assert has_wildcard("ab*")
    assert not has_wildcard(r"ab\*")


def test_unknown_relation_in_mapping_is_a_translation_error():
    with pytest.raises(TranslationError):
        resolve_index("username", {"no_such_table.jsonb": USER_SCHEMA})


def test_unknown_table_in_context_is_a_translation_error():
    ctx = QueryContext(table="accounts", cql=None, predicate=None, limit=10, offset=0)

    with pytest.raises(TranslationError):
        ctx.statement()
