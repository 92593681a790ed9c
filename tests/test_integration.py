"""Integration tests for RelQL over real DuckDB databases."""

import asyncio

import duckdb
import pytest

from relql import RelQL
from relql.exceptions import SchemaError, UnsupportedTypeError
from relql.schema import model
from relql.schema.model import ColumnDescriptor, RelationEdge, TableModel
from relql.schema.types import ColumnOverride
from .test_database import (
    create_blog_database,
    create_raw_json_database,
    create_types_database,
    create_unsupported_database,
)


async def run(server, query, variables=None):
    result = await server.get_schema().execute(query, variable_values=variables)
    assert result.errors is None, result.errors
    return result.data


class TestBlogQueries:
    """Test list and single queries with relations."""

    @pytest.fixture
    def db_connection(self):
        return create_blog_database()

    @pytest.fixture
    def relql(self, db_connection):
        server = RelQL(db_connection)
        yield server
        server.close()

    @pytest.mark.asyncio
    async def test_simple_query(self, relql):
        data = await run(relql, """
            query {
                users(order_by: {id: ASC}) { id name email }
            }
        """)

        assert data["users"] == [
            {"id": 1, "name": "Alice", "email": "alice@example.com"},
            {"id": 2, "name": "Bob", "email": "bob@example.com"},
            {"id": 3, "name": "Carol", "email": "carol@example.com"},
        ]

    @pytest.mark.asyncio
    async def test_query_with_filter(self, relql):
        data = await run(relql, """
            query {
                users(where: {id_gte: 2, name_like: "B%"}) { name }
            }
        """)
        assert data["users"] == [{"name": "Bob"}]

    @pytest.mark.asyncio
    async def test_filter_on_enum(self, relql):
        data = await run(relql, """
            query {
                users(where: {role: admin}) { name role }
            }
        """)
        assert data["users"] == [{"name": "Alice", "role": "admin"}]

    @pytest.mark.asyncio
    async def test_filter_with_variables(self, relql):
        data = await run(relql, """
            query Pick($ids: [Int!]) {
                users(where: {id_in: $ids}, order_by: {id: DESC}) { name }
            }
        """, {"ids": [1, 3]})
        assert data["users"] == [{"name": "Carol"}, {"name": "Alice"}]

    @pytest.mark.asyncio
    async def test_null_filter(self, relql):
        data = await run(relql, """
            query {
                users(where: {bio_is_null: false}) { name }
            }
        """)
        assert data["users"] == [{"name": "Alice"}]

    @pytest.mark.asyncio
    async def test_pagination(self, relql):
        data = await run(relql, """
            query {
                posts(order_by: {id: ASC}, limit: 1, offset: 1) { id }
            }
        """)
        assert data["posts"] == [{"id": 2}]

    @pytest.mark.asyncio
    async def test_negative_limit_is_rejected(self, relql):
        result = await relql.get_schema().execute("query { users(limit: -1) { id } }")
        assert result.errors
        assert result.errors[0].original_error.error_code == "VALIDATION_ERROR"
        assert result.errors[0].message == "'limit' must not be negative"

    @pytest.mark.asyncio
    async def test_single_query(self, relql):
        data = await run(relql, """
            query {
                bob: usersSingle(where: {name: "Bob"}) { id }
                nobody: usersSingle(where: {name: "Zed"}) { id }
            }
        """)
        assert data["bob"] == {"id": 2}
        assert data["nobody"] is None

    @pytest.mark.asyncio
    async def test_many_relation(self, relql):
        data = await run(relql, """
            query {
                users(order_by: {id: ASC}) {
                    name
                    posts(order_by: {id: DESC}, limit: 1) { title }
                }
            }
        """)

        assert data["users"] == [
            {"name": "Alice", "posts": [{"title": "Draft notes"}]},
            {"name": "Bob", "posts": [{"title": "Bob writes"}]},
            {"name": "Carol", "posts": []},
        ]

    @pytest.mark.asyncio
    async def test_relation_filter(self, relql):
        data = await run(relql, """
            query {
                usersSingle(where: {id: 1}) {
                    published: posts(where: {status: published}) { title }
                }
            }
        """)

        assert data["usersSingle"]["published"] == [{"title": "Hello DuckDB"}]

    @pytest.mark.asyncio
    async def test_aliased_relations_keep_their_arguments(self, relql):
        data = await run(relql, """
            query {
                usersSingle(where: {id: 1}) {
                    pub: posts(where: {status: published}) { title }
                    drafts: posts(where: {status: draft}) { title }
                    posts(order_by: {id: ASC}) { id }
                }
            }
        """)

        assert data["usersSingle"] == {
            "pub": [{"title": "Hello DuckDB"}],
            "drafts": [{"title": "Draft notes"}],
            "posts": [{"id": 1}, {"id": 2}],
        }

    @pytest.mark.asyncio
    async def test_aliased_one_relations(self, relql):
        data = await run(relql, """
            query {
                posts(order_by: {id: ASC}) {
                    bob: author(where: {name: "Bob"}) { name }
                    writer: author { id }
                }
            }
        """)

        assert data["posts"] == [
            {"bob": None, "writer": {"id": 1}},
            {"bob": None, "writer": {"id": 1}},
            {"bob": {"name": "Bob"}, "writer": {"id": 2}},
        ]

    @pytest.mark.asyncio
    async def test_one_relation(self, relql):
        data = await run(relql, """
            query {
                comments(order_by: {id: ASC}) {
                    body
                    author { name }
                }
            }
        """)

        assert [c["author"] for c in data["comments"]] == [
            {"name": "Bob"}, {"name": "Carol"}, {"name": "Alice"}, None
        ]

    @pytest.mark.asyncio
    async def test_one_relation_filtered_out(self, relql):
        data = await run(relql, """
            query {
                posts(order_by: {id: ASC}) {
                    author(where: {name: "Bob"}) { name }
                }
            }
        """)
        assert [p["author"] for p in data["posts"]] == [None, None, {"name": "Bob"}]

    @pytest.mark.asyncio
    async def test_nested_relations(self, relql):
        data = await run(relql, """
            query {
                users(where: {id: 2}) {
                    posts {
                        title
                        comments {
                            body
                            author { name }
                        }
                    }
                }
            }
        """)

        assert data["users"] == [{
            "posts": [{
                "title": "Bob writes",
                "comments": [{"body": "Welcome Bob", "author": {"name": "Alice"}}],
            }]
        }]

    @pytest.mark.asyncio
    async def test_relation_batches_one_query_per_level(self, relql):
        relql.reset_stats()
        await run(relql, """
            query {
                users {
                    posts { comments { body } }
                }
            }
        """)
        assert relql.get_stats()["query_count"] == 3

    @pytest.mark.asyncio
    async def test_interface_fragment(self, relql):
        data = await run(relql, """
            query {
                users(where: {id: 1}) {
                    ... on UsersFields { id name }
                    bio
                }
            }
        """)
        assert data["users"] == [{"id": 1, "name": "Alice", "bio": "Writes about databases"}]

    @pytest.mark.asyncio
    async def test_named_fragment_inside_relation(self, relql):
        data = await run(relql, """
            query {
                postsSingle(where: {id: 3}) {
                    author { ...Contact }
                }
            }
            fragment Contact on UsersFields { name email }
        """)
        assert data["postsSingle"]["author"] == {"name": "Bob", "email": "bob@example.com"}

    @pytest.mark.asyncio
    async def test_typename_only(self, relql):
        data = await run(relql, "query { usersSingle(where: {id: 3}) { __typename } }")
        assert data["usersSingle"] == {"__typename": "UsersSelectItem"}

    @pytest.mark.asyncio
    async def test_scalar_conversions(self, relql):
        data = await run(relql, """
            query {
                posts(order_by: {id: ASC}) { status views rating multimediaUrls published_on }
            }
        """)

        first, second, third = data["posts"]
        assert first == {
            "status": "published",
            "views": "9007199254740993",
            "rating": 4.5,
            "multimediaUrls": ["intro.png", "demo.mp4"],
            "published_on": "2024-01-15",
        }
        assert second["multimediaUrls"] is None
        assert third["multimediaUrls"] == []

    @pytest.mark.asyncio
    async def test_bigint_filter(self, relql):
        data = await run(relql, 'query { posts(where: {views_gt: "100"}) { id } }')
        assert data["posts"] == [{"id": 1}]

    @pytest.mark.asyncio
    async def test_json_columns(self, relql):
        data = await run(relql, "query { users(order_by: {id: ASC}) { tags config } }")

        assert data["users"][0] == {"tags": ["duckdb", "graphql"], "config": {"theme": "dark", "digest": True}}
        assert data["users"][1] == {"tags": [], "config": None}
        assert data["users"][2] == {"tags": None, "config": None}

    @pytest.mark.asyncio
    async def test_concurrent_queries(self, relql):
        schema = relql.get_schema()
        results = await asyncio.gather(*[
            schema.execute("query { users { posts { title } } }") for _ in range(5)
        ])
        assert all(result.errors is None for result in results)


class TestMutations:
    """Test insert, update and delete mutations."""

    @pytest.fixture
    def db_connection(self):
        return create_blog_database()

    @pytest.fixture
    def relql(self, db_connection):
        server = RelQL(db_connection)
        yield server
        server.close()

    @pytest.mark.asyncio
    async def test_insert_single(self, relql):
        data = await run(relql, """
            mutation {
                insertIntoUsersSingle(values: {id: 4, name: "Dan", email: "dan@example.com", tags: ["new"]}) {
                    id name role tags
                }
            }
        """)
        assert data["insertIntoUsersSingle"] == {"id": 4, "name": "Dan", "role": "reader", "tags": ["new"]}

    @pytest.mark.asyncio
    async def test_insert_many(self, relql, db_connection):
        data = await run(relql, """
            mutation {
                insertIntoComments(values: [
                    {id: 10, post_id: 3, body: "One"},
                    {id: 11, post_id: 3, author_id: 2, body: "Two"}
                ]) { id author_id }
            }
        """)

        assert data["insertIntoComments"] == [{"id": 10, "author_id": None}, {"id": 11, "author_id": 2}]
        assert db_connection.execute("SELECT COUNT(*) FROM comments").fetchone()[0] == 6

    @pytest.mark.asyncio
    async def test_insert_many_is_atomic(self, relql, db_connection):
        result = await relql.get_schema().execute("""
            mutation {
                insertIntoUsers(values: [
                    {id: 5, name: "Eve", email: "eve@example.com"},
                    {id: 1, name: "Again", email: "again@example.com"}
                ]) { id }
            }
        """)

        assert result.errors
        assert "Constraint violation" in result.errors[0].message
        assert db_connection.execute("SELECT COUNT(*) FROM users").fetchone()[0] == 3

    @pytest.mark.asyncio
    async def test_insert_with_enum_and_bigint(self, relql):
        data = await run(relql, """
            mutation {
                insertIntoPostsSingle(values: {
                    id: 9, author_id: 3, title: "Carol", status: archived, views: "9007199254740995"
                }) { status views }
            }
        """)
        assert data["insertIntoPostsSingle"] == {"status": "archived", "views": "9007199254740995"}

    @pytest.mark.asyncio
    async def test_update(self, relql):
        data = await run(relql, """
            mutation {
                updateComments(set: {body: "Edited"}, where: {id: 3}) { id body }
            }
        """)
        assert data["updateComments"] == [{"id": 3, "body": "Edited"}]

    @pytest.mark.asyncio
    async def test_update_sets_null(self, relql):
        data = await run(relql, """
            mutation {
                updateComments(set: {author_id: null}, where: {post_id: 3}) { id author_id }
            }
        """)
        assert data["updateComments"] == [{"id": 3, "author_id": None}]

    @pytest.mark.asyncio
    async def test_delete(self, relql):
        data = await run(relql, """
            mutation {
                deleteFromComments(where: {post_id: 1}) { id }
            }
        """)

        assert sorted(row["id"] for row in data["deleteFromComments"]) == [1, 2, 4]
        remaining = await run(relql, "query { comments { id } }")
        assert remaining["comments"] == [{"id": 3}]

    @pytest.mark.asyncio
    async def test_mutations_can_be_disabled(self, db_connection):
        server = RelQL(db_connection, mutations=False)
        assert "insertIntoUsers" not in str(server.get_schema())
        server.close()


class TestSchemaOptions:
    """Test construction options and rebuilding."""

    def test_relations_depth_limit(self):
        server = RelQL(create_blog_database(), relations_depth_limit=1)
        sdl = str(server.get_schema())

        assert "type UsersPostsRelation implements PostsFields" in sdl
        assert "UsersPostsAuthorRelation" not in sdl
        server.close()

    def test_declared_relations(self):
        relation = RelationEdge('users', 'comments', model.MANY, 'feedback', ('id',), ('author_id',))
        server = RelQL(create_blog_database(), relations=[relation])

        assert server.synthesized.relation_type_name("UsersSelectItem", "feedback") == "UsersFeedbackRelation"
        server.close()

    @pytest.mark.asyncio
    async def test_rebuild_after_ddl(self):
        db_connection = create_blog_database()
        server = RelQL(db_connection)
        db_connection.execute("CREATE TABLE labels (id INTEGER PRIMARY KEY, label VARCHAR)")
        db_connection.execute("INSERT INTO labels VALUES (1, 'news')")

        assert "labels" not in server.synthesized.tables
        server.rebuild()

        data = await run(server, "query { labels { label } }")
        assert data["labels"] == [{"label": "news"}]
        server.close()

    def test_unsupported_column_fails_construction(self):
        with pytest.raises(UnsupportedTypeError) as exc_info:
            RelQL(create_unsupported_database())
        assert exc_info.value.context["table"] == "shapes"
        assert exc_info.value.context["column"] == "shape"

    def test_column_override(self):
        server = RelQL(
            create_unsupported_database(),
            column_overrides={"shapes": {"shape": ColumnOverride(str, description="Shape as text", output=str)}},
        )
        assert "Shape as text" in str(server.get_schema())
        server.close()

    def test_empty_database(self):
        with pytest.raises(SchemaError):
            RelQL(duckdb.connect(":memory:"))


class TestAllTypes:
    """Test every supported column type end to end."""

    @pytest.fixture
    def relql(self):
        server = RelQL(create_types_database())
        yield server
        server.close()

    @pytest.mark.asyncio
    async def test_conversions(self, relql):
        data = await run(relql, """
            query {
                measurementsSingle {
                    tiny huge unsigned price ratio flag taken_on taken_at payload
                    readings labels embedding location { x y } attributes token
                    select field_2nd_reading
                }
            }
        """)
        row = data["measurementsSingle"]

        assert row["tiny"] == 1
        assert row["huge"] == "170141183460469231731687303715884105727"
        assert row["unsigned"] == "7"
        assert row["price"] == pytest.approx(19.99)
        assert row["ratio"] == pytest.approx(0.5)
        assert row["flag"] is True
        assert row["taken_on"] == "2024-03-01"
        assert row["taken_at"] == "2024-03-01T12:30:00"
        assert row["payload"] == [1, 2]
        assert row["readings"] == [1, 2, 3]
        assert row["labels"] == ["a"]
        assert row["embedding"] == pytest.approx([0.5, 1.5, 2.5])
        assert row["location"] == {"x": 1.0, "y": 2.0}
        assert row["attributes"] == {"unit": "cm"}
        assert row["token"] == "a0eebc99-9c0b-4ef8-bb6d-6bb9bd380a11"
        assert row["select"] == "kw"
        assert row["field_2nd_reading"] == 2.5

    @pytest.mark.asyncio
    async def test_quoted_column_filter(self, relql):
        data = await run(relql, "query { measurements(where: {field_2nd_reading_gt: 2.0}) { id } }")
        assert data["measurements"] == [{"id": 1}]


class TestRawJsonColumns:
    """JSON documents stored as text, described with explicit table models."""

    @pytest.fixture
    def relql(self):
        def column(name, **kwargs):
            return ColumnDescriptor(table="documents", name=name, **kwargs)

        documents = TableModel(
            name="documents",
            columns=[
                column("id", kind=model.NUMBER, native_type="INTEGER", not_null=True, is_primary_key=True),
                column("body", kind=model.JSON_KIND, native_type="JSON_TEXT"),
                column("attachments", kind=model.JSON_KIND, native_type="JSON_TEXT"),
            ],
            primary_keys=["id"],
        )
        server = RelQL(
            create_raw_json_database(),
            tables=[documents],
            json_array_columns={"documents": ["attachments"]},
        )
        yield server
        server.close()

    @pytest.mark.asyncio
    async def test_malformed_json_degrades(self, relql):
        data = await run(relql, "query { documents(order_by: {id: ASC}) { body attachments } }")

        assert data["documents"] == [
            {"body": {"title": "ok"}, "attachments": ["a.txt", "3"]},
            {"body": "{broken", "attachments": []},
            {"body": None, "attachments": None},
        ]
