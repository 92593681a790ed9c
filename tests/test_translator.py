"""Tests for structured filter to SQL translation."""

import pytest

from relql.exceptions import FilterError
from relql.execution.translator import QueryContext, SQLTranslator


class TestSQLTranslator:
    """Test SELECT translation."""

    @pytest.fixture
    def translator(self):
        return SQLTranslator()

    def test_select_columns(self, translator):
        sql, params = translator.translate_query('users', ['id', 'name'])

        assert 'SELECT' in sql
        assert '"id"' in sql
        assert '"name"' in sql
        assert 'FROM "users"' in sql
        assert params == []

    def test_select_all_without_columns(self, translator):
        sql, _ = translator.translate_query('users', [])
        assert 'SELECT' in sql
        assert '*' in sql

    def test_simple_where_clause(self, translator):
        sql, params = translator.translate_query('users', ['id'], where={'id': {'eq': 1}})

        assert 'WHERE' in sql
        assert '"id" = ?' in sql
        assert params == [1]

    def test_params_follow_placeholder_order(self, translator):
        sql, params = translator.translate_query(
            'products',
            ['id'],
            where={
                'price': {'gt': 10, 'lte': 100},
                'name': {'ne': 'test'},
            },
        )

        assert '"price" > ?' in sql
        assert '"price" <= ?' in sql
        assert '"name" <> ?' in sql
        assert params == [10, 100, 'test']

    def test_pattern_operators(self, translator):
        sql, params = translator.translate_query(
            'users', ['id'], where={'name': {'like': 'A%'}, 'email': {'ilike': '%@EXAMPLE.COM'}}
        )

        assert '"name" LIKE ?' in sql
        assert '"email" ILIKE ?' in sql
        assert params == ['A%', '%@EXAMPLE.COM']

    def test_in_operator(self, translator):
        sql, params = translator.translate_query('users', ['id'], where={'id': {'in': [1, 2, 3]}})

        assert '"id" IN (?, ?, ?)' in sql
        assert params == [1, 2, 3]

    def test_not_in_operator(self, translator):
        sql, params = translator.translate_query('users', ['id'], where={'id': {'not_in': [4]}})

        assert 'NOT' in sql
        assert 'IN (?)' in sql
        assert params == [4]

    def test_empty_in_matches_nothing(self, translator):
        sql, params = translator.translate_query('users', ['id'], where={'id': {'in': []}})
        assert 'FALSE' in sql
        assert params == []

    def test_empty_not_in_matches_everything(self, translator):
        sql, params = translator.translate_query('users', ['id'], where={'id': {'not_in': []}})
        assert 'TRUE' in sql
        assert params == []

    def test_is_null(self, translator):
        sql, params = translator.translate_query('users', ['id'], where={'bio': {'is_null': True}})
        assert '"bio" IS NULL' in sql
        assert params == []

        sql, _ = translator.translate_query('users', ['id'], where={'bio': {'is_null': False}})
        assert 'NOT "bio" IS NULL' in sql

    def test_null_value_adds_no_condition(self, translator):
        sql, params = translator.translate_query('users', ['id'], where={'name': {'eq': None}})
        assert 'WHERE' not in sql
        assert params == []

    def test_unknown_operator(self, translator):
        with pytest.raises(FilterError) as exc_info:
            translator.translate_query('users', ['id'], where={'name': {'between': [1, 2]}})
        assert exc_info.value.error_code == 'FILTER_ERROR'
        assert exc_info.value.context['table'] == 'users'

    def test_malformed_filter(self, translator):
        with pytest.raises(FilterError):
            translator.translate_query('users', ['id'], where={'name': 'Alice'})

    def test_order_limit_offset(self, translator):
        sql, _ = translator.translate_query(
            'users', ['id'], order_by={'name': 'DESC', 'id': 'ASC'}, limit=10, offset=20
        )

        assert 'ORDER BY' in sql
        assert '"name" DESC' in sql
        assert 'LIMIT 10' in sql
        assert 'OFFSET 20' in sql

    def test_single_column_keys(self, translator):
        sql, params = translator.translate_query(
            'posts', ['id', 'author_id'], where={'status': {'eq': 'draft'}}, keys=(['author_id'], [(1,), (2,)])
        )

        assert '"status" = ?' in sql
        assert '"author_id" IN (?, ?)' in sql
        assert params == ['draft', 1, 2]

    def test_composite_keys(self, translator):
        sql, params = translator.translate_query('lines', ['id'], keys=(['order_id', 'line_no'], [(1, 1), (1, 2)]))

        assert '"order_id" = ?' in sql
        assert '"line_no" = ?' in sql
        assert ' OR ' in sql
        assert params == [1, 1, 1, 2]

    def test_empty_keys_match_nothing(self, translator):
        sql, params = translator.translate_query('posts', ['id'], keys=(['author_id'], []))
        assert 'FALSE' in sql
        assert params == []

    def test_quoted_identifiers(self, translator):
        sql, _ = translator.translate_query('order', ['select', '2nd-reading'])
        assert '"select"' in sql
        assert '"2nd-reading"' in sql
        assert 'FROM "order"' in sql


class TestMutationTranslation:
    """Test INSERT, UPDATE and DELETE translation."""

    @pytest.fixture
    def translator(self):
        return SQLTranslator()

    def test_insert(self, translator):
        sql, params = translator.translate_insert('users', {'id': 4, 'name': 'Dan'}, ['id', 'name'])

        assert sql == 'INSERT INTO "users" ("id", "name") VALUES (?, ?) RETURNING "id", "name"'
        assert params == [4, 'Dan']

    def test_insert_defaults(self, translator):
        sql, params = translator.translate_insert('events', {}, ['id'])
        assert sql == 'INSERT INTO "events" DEFAULT VALUES RETURNING "id"'
        assert params == []

    def test_update(self, translator):
        sql, params = translator.translate_update('posts', {'title': 'New'}, {'id': {'eq': 2}}, ['id'])

        assert sql.startswith('UPDATE "posts" SET "title" = ? WHERE "id" = ?')
        assert sql.endswith('RETURNING "id"')
        assert params == ['New', 2]

    def test_update_without_filter(self, translator):
        sql, params = translator.translate_update('posts', {'views': 0}, None, ['id'])
        assert 'WHERE' not in sql
        assert params == [0]

    def test_update_requires_values(self, translator):
        with pytest.raises(FilterError):
            translator.translate_update('posts', {}, {'id': {'eq': 2}}, ['id'])

    def test_delete(self, translator):
        sql, params = translator.translate_delete('comments', {'post_id': {'in': [1, 3]}}, ['id'])

        assert sql.startswith('DELETE FROM "comments" WHERE "post_id" IN (?, ?)')
        assert sql.endswith('RETURNING "id"')
        assert params == [1, 3]

    def test_delete_everything(self, translator):
        sql, params = translator.translate_delete('comments', None, [])
        assert sql == 'DELETE FROM "comments"'
        assert params == []

    def test_mutations_quote_identifiers(self, translator):
        sql, _ = translator.translate_insert('order', {'select': 1, 'we"ird': 2}, ['2nd-reading'])
        assert sql == 'INSERT INTO "order" ("select", "we""ird") VALUES (?, ?) RETURNING "2nd-reading"'

        sql, _ = translator.translate_update('order', {'select': 1}, {'we"ird': {'eq': 2}}, ['select'])
        assert sql == 'UPDATE "order" SET "select" = ? WHERE "we""ird" = ? RETURNING "select"'


class TestQueryContext:
    """Test parameter binding."""

    def test_bind_appends_params(self):
        context = QueryContext(table_name='users')
        first = context.bind(1)
        context.bind('a')

        assert context.params == [1, 'a']
        assert first.sql() == '?'
