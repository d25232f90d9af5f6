"""
tests/test_queries.py
Tests for the per-operation query generators and their dispatch.

Expected SQL is spelled out in full for the reference models so that any
change to text or binding order shows up as a readable diff.
"""

from __future__ import annotations

import pytest

from querygen import queries
from querygen.exceptions import OrderByError, UnsupportedOperationError
from querygen.models import OperationKind

COMMENT_RETURNING = (
    "RETURNING comments.id, comments.organization_id, comments.updated_at, "
    "comments.created_at, comments.body, comments.post_id"
)
POST_TAG_RETURNING = (
    "RETURNING post_tags.post_id, post_tags.tag_id, post_tags.organization_id, "
    "post_tags.updated_at, post_tags.created_at"
)


# ---------------------------------------------------------------------------
# Insert
# ---------------------------------------------------------------------------


class TestInsert:
    def test_tenant_model(self, comment):
        ctx = queries.insert(comment)
        assert ctx.operation_name == "insert"
        assert ctx.sql_text == (
            "INSERT INTO app.comments (id, organization_id, body, post_id) "
            "VALUES ($1, $2, $3, $4) " + COMMENT_RETURNING
        )
        assert ctx.bindings == ("id", "organization_id", "body", "post_id")
        assert ctx.field_bindings == ("body", "post_id")

    def test_global_model_has_no_organization(self, team):
        ctx = queries.insert(team)
        assert ctx.sql_text == (
            "INSERT INTO app.teams (id, name) VALUES ($1, $2) "
            "RETURNING teams.id, teams.updated_at, teams.created_at, teams.name"
        )
        assert ctx.bindings == ("id", "name")

    def test_owner_write_fields_are_inserted(self, post):
        ctx = queries.insert(post)
        assert ctx.bindings == (
            "id", "organization_id", "title", "body", "published", "team_id",
        )
        assert ctx.field_bindings == ("title", "body", "published", "team_id")

    def test_join_model_binds_both_parent_ids(self, post_tag):
        ctx = queries.insert(post_tag)
        assert ctx.sql_text == (
            "INSERT INTO app.post_tags (post_id, tag_id, organization_id) "
            "VALUES ($1, $2, $3) " + POST_TAG_RETURNING
        )
        assert ctx.bindings == ("join_id_0", "join_id_1", "organization_id")
        assert ctx.field_bindings == ()


# ---------------------------------------------------------------------------
# Update
# ---------------------------------------------------------------------------


class TestUpdate:
    def test_only_writable_fields_are_set(self, comment):
        ctx = queries.update(comment)
        assert ctx.sql_text == (
            "UPDATE app.comments SET post_id = $2, updated_at = NOW() "
            "WHERE id = $1 AND organization_id = $3"
        )
        assert ctx.bindings == ("id", "post_id", "organization_id")
        assert ctx.field_bindings == ("post_id",)

    def test_owner_write_field_excluded(self, post):
        ctx = queries.update(post)
        assert "published" not in ctx.sql_text
        assert ctx.sql_text == (
            "UPDATE app.posts SET title = $2, body = $3, team_id = $4, "
            "updated_at = NOW() WHERE id = $1 AND organization_id = $5"
        )

    def test_global_model(self, team):
        ctx = queries.update(team)
        assert ctx.sql_text == "UPDATE app.teams SET name = $2, updated_at = NOW() WHERE id = $1"
        assert ctx.bindings == ("id", "name")

    def test_join_model_only_touches_timestamp(self, post_tag):
        ctx = queries.update(post_tag)
        assert ctx.sql_text == (
            "UPDATE app.post_tags SET updated_at = NOW() "
            "WHERE post_id = $1 AND tag_id = $2 AND organization_id = $3"
        )

    def test_update_with_parent(self, comment):
        (ctx,) = queries.update_one_with_parent(comment)
        assert ctx.operation_name == "update_one_with_parent_of_post"
        assert ctx.sql_text == (
            "UPDATE app.comments SET post_id = $2, updated_at = NOW() "
            "WHERE id = $1 AND post_id = $3 AND organization_id = $4"
        )
        assert ctx.bindings == ("id", "post_id", "parent_id", "organization_id")

    def test_update_with_parent_skips_join_models(self, post_tag):
        assert queries.update_one_with_parent(post_tag) == []

    def test_update_with_parent_without_parents(self, post):
        assert queries.update_one_with_parent(post) == []


# ---------------------------------------------------------------------------
# Select
# ---------------------------------------------------------------------------


class TestSelectOne:
    def test_tenant_model(self, post):
        ctx = queries.select_one(post)
        assert ctx.operation_name == "select_one"
        assert ctx.sql_text == (
            "SELECT tb.id, tb.organization_id, tb.updated_at, tb.created_at, "
            "tb.title, tb.body, tb.published, tb.team_id FROM app.posts tb "
            "WHERE tb.id = $1 AND tb.organization_id = $2"
        )
        assert ctx.bindings == ("id", "organization_id")

    def test_global_model_filters_by_id_only(self, team):
        ctx = queries.select_one(team)
        assert ctx.sql_text == (
            "SELECT tb.id, tb.updated_at, tb.created_at, tb.name "
            "FROM app.teams tb WHERE tb.id = $1"
        )
        assert ctx.sql_text.endswith("WHERE tb.id = $1")
        assert ctx.bindings == ("id",)

    def test_join_model(self, post_tag):
        ctx = queries.select_one(post_tag)
        assert ctx.sql_text.endswith(
            "FROM app.post_tags tb WHERE tb.post_id = $1 AND tb.tag_id = $2 "
            "AND tb.organization_id = $3"
        )

    def test_populated_without_children_is_none(self, comment, team):
        assert queries.select_one(comment, populate_children=True) is None
        assert queries.select_one(team, populate_children=True) is None

    def test_populated_nests_children_and_references(self, post):
        ctx = queries.select_one(post, populate_children=True)
        assert ctx.operation_name == "select_one_populated"
        sql = ctx.sql_text
        assert sql.startswith("SELECT tb.id, tb.organization_id,")
        assert (
            "FROM app.comments t WHERE t.post_id = $1 AND t.organization_id = $2) "
            'AS "comments"'
        ) in sql
        assert "COALESCE(ARRAY_AGG(JSONB_BUILD_OBJECT('id', t.id," in sql
        assert (
            "(SELECT COALESCE(ARRAY_AGG(ct.tag_id), ARRAY[]::uuid[]) FROM app.post_tags ct "
            'WHERE ct.post_id = $1 AND ct.organization_id = $2) AS "tag_ids"'
        ) in sql
        assert (
            "CASE WHEN ref_team.id IS NOT NULL THEN JSONB_BUILD_OBJECT('name', ref_team.name) "
            'ELSE NULL END AS "team"'
        ) in sql
        assert " LEFT JOIN app.teams ref_team ON ref_team.id = tb.team_id" in sql
        assert sql.endswith("WHERE tb.id = $1 AND tb.organization_id = $2")
        assert ctx.bindings == ("id", "organization_id")


# ---------------------------------------------------------------------------
# Delete
# ---------------------------------------------------------------------------


class TestDelete:
    def test_plain_delete(self, comment):
        ctx = queries.delete(comment)
        assert ctx.sql_text == "DELETE FROM app.comments WHERE id = $1 AND organization_id = $2"
        assert ctx.bindings == ("id", "organization_id")

    def test_delete_with_permission_check(self, post):
        ctx = queries.delete(post)
        assert ctx.sql_text == (
            "DELETE FROM app.posts WHERE id = $1 AND organization_id = $2 AND "
            "EXISTS (SELECT 1 FROM auth.permissions WHERE organization_id = $2 "
            "AND actor_id = ANY($3) AND permission IN ('Post::owner'))"
        )
        assert ctx.bindings == ("id", "organization_id", "actor_ids")

    def test_join_model_delete(self, post_tag):
        ctx = queries.delete(post_tag)
        assert ctx.sql_text == (
            "DELETE FROM app.post_tags WHERE post_id = $1 AND tag_id = $2 "
            "AND organization_id = $3"
        )

    def test_delete_children_of_parent(self, comment):
        names = [c.operation_name for c in queries.delete_children_queries(comment)]
        assert names == [
            "delete_all_children_of_post",
            "delete_removed_children_of_post",
            "delete_with_parent_of_post",
        ]

    def test_delete_all_and_with_parent(self, comment):
        parent = comment.belongs_to[0]
        everything = queries.delete_all_children(comment, parent)
        assert everything.sql_text == (
            "DELETE FROM app.comments WHERE organization_id = $1 AND post_id = $2"
        )
        one = queries.delete_with_parent(comment, parent)
        assert one.sql_text == (
            "DELETE FROM app.comments WHERE organization_id = $1 AND post_id = $2 AND id = $3"
        )
        assert one.bindings == ("organization_id", "parent_id", "id")

    def test_delete_removed_children_compares_other_id(self, comment, post_tag):
        ctx = queries.delete_removed_children(comment, comment.belongs_to[0])
        assert ctx.sql_text.endswith("AND post_id = $2 AND id <> ALL($3)")

        by_post, by_tag = post_tag.belongs_to
        ctx = queries.delete_removed_children(post_tag, by_post)
        assert ctx.sql_text == (
            "DELETE FROM app.post_tags WHERE organization_id = $1 AND post_id = $2 "
            "AND tag_id <> ALL($3)"
        )
        assert ctx.bindings == ("organization_id", "parent_id", "ids")
        ctx = queries.delete_removed_children(post_tag, by_tag)
        assert ctx.sql_text.endswith("AND tag_id = $2 AND post_id <> ALL($3)")


# ---------------------------------------------------------------------------
# List
# ---------------------------------------------------------------------------


class TestList:
    def test_tenant_list_is_paginated_and_sorted(self, post):
        ctx = queries.list_query(post)
        assert ctx.sql_text == (
            "SELECT tb.id, tb.organization_id, tb.updated_at, tb.created_at, "
            "tb.title, tb.published, tb.team_id FROM app.posts tb "
            "WHERE tb.organization_id = $1 ORDER BY tb.updated_at DESC LIMIT $2 OFFSET $3"
        )
        assert ctx.bindings == ("organization_id", "limit", "offset")

    def test_global_list_has_no_where(self, team):
        ctx = queries.list_query(team)
        assert ctx.sql_text == (
            "SELECT tb.id, tb.updated_at, tb.created_at, tb.name FROM app.teams tb "
            "ORDER BY tb.updated_at DESC LIMIT $1 OFFSET $2"
        )

    def test_pagination_disabled(self, post_tag):
        ctx = queries.list_query(post_tag)
        assert ctx.sql_text == (
            "SELECT tb.post_id, tb.tag_id, tb.organization_id, tb.updated_at, tb.created_at "
            "FROM app.post_tags tb WHERE tb.organization_id = $1 ORDER BY tb.updated_at DESC"
        )
        assert "LIMIT" not in ctx.sql_text

    def test_model_default_sort(self, tag):
        ctx = queries.list_query(tag)
        assert "ORDER BY tb.label ASC" in ctx.sql_text

    def test_requested_sort(self, post):
        assert "ORDER BY tb.title ASC" in queries.list_query(post, order_by="title").sql_text
        assert "ORDER BY tb.title DESC" in queries.list_query(post, order_by="-title").sql_text

    def test_rejected_sort(self, post, tag):
        with pytest.raises(OrderByError) as exc_info:
            queries.list_query(post, order_by="body")
        assert exc_info.value.reason == OrderByError.INVALID_FIELD
        with pytest.raises(OrderByError) as exc_info:
            queries.list_query(tag, order_by="-label")
        assert exc_info.value.reason == OrderByError.INVALID_DIRECTION

    def test_populated_list(self, post):
        ctx = queries.list_query(post, populate_children=True)
        assert ctx.operation_name == "list_populated"
        assert (
            "(SELECT COALESCE(ARRAY_AGG(ct.id), ARRAY[]::uuid[]) FROM app.comments ct "
            'WHERE ct.post_id = tb.id AND ct.organization_id = $1) AS "comment_ids"'
        ) in ctx.sql_text
        assert (
            "(SELECT JSONB_BUILD_OBJECT('name', ref_team.name) FROM app.teams ref_team "
            'WHERE ref_team.id = tb.team_id) AS "team"'
        ) in ctx.sql_text
        assert "tag_ids" not in ctx.sql_text

    def test_populated_list_without_children_is_none(self, comment):
        assert queries.list_query(comment, populate_children=True) is None


# ---------------------------------------------------------------------------
# Upsert
# ---------------------------------------------------------------------------


class TestUpsert:
    def test_single_child_upsert(self, comment):
        ctx = queries.upsert_single_child(comment, comment.belongs_to[0])
        assert ctx.operation_name == "upsert_single_child_of_post"
        assert ctx.sql_text == (
            "INSERT INTO app.comments (id, organization_id, post_id) VALUES ($1, $2, $3) "
            "ON CONFLICT (id) DO UPDATE SET post_id = EXCLUDED.post_id, updated_at = NOW() "
            "WHERE comments.organization_id = $2 AND comments.post_id = $4 "
            + COMMENT_RETURNING
        )
        assert ctx.bindings == ("id", "organization_id", "post_id", "parent_id")

    def test_join_model_upsert_does_nothing_on_conflict(self, post_tag):
        first, second = queries.upsert_queries(post_tag)
        assert first.operation_name == "upsert_single_child_of_post"
        assert second.operation_name == "upsert_single_child_of_tag"
        assert first.sql_text == (
            "INSERT INTO app.post_tags (post_id, tag_id, organization_id) VALUES ($1, $2, $3) "
            "ON CONFLICT (post_id, tag_id) DO NOTHING " + POST_TAG_RETURNING
        )


# ---------------------------------------------------------------------------
# Permission lookup
# ---------------------------------------------------------------------------


class TestLookupObjectPermissions:
    def test_lookup(self, post):
        ctx = queries.lookup_object_permissions(post)
        assert ctx.bindings == ("organization_id", "actor_ids", "id")
        assert ctx.sql_text.startswith(
            "SELECT CASE WHEN bool_or(permission IN ('org_admin', 'Post::owner')) THEN 'owner'"
        )
        assert "FROM auth.object_permissions" in ctx.sql_text
        assert "AND object_id = $3" in ctx.sql_text

    def test_join_model_is_unsupported(self, post_tag):
        with pytest.raises(UnsupportedOperationError):
            queries.lookup_object_permissions(post_tag)


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


class TestDispatch:
    def test_every_kind_has_a_generator(self):
        assert set(queries._GENERATORS) == set(OperationKind)

    def test_comment_query_names(self, comment):
        names = [c.operation_name for c in queries.create_model_queries(comment)]
        assert names == [
            "insert",
            "update",
            "update_one_with_parent_of_post",
            "select_one",
            "delete",
            "delete_all_children_of_post",
            "delete_removed_children_of_post",
            "delete_with_parent_of_post",
            "list",
            "upsert_single_child_of_post",
            "lookup_object_permissions",
        ]

    def test_post_query_names(self, post):
        names = [c.operation_name for c in queries.create_model_queries(post)]
        assert names == [
            "insert",
            "update",
            "select_one",
            "select_one_populated",
            "delete",
            "list",
            "list_populated",
            "lookup_object_permissions",
        ]

    def test_join_model_plan_omits_lookup(self, post_tag):
        kinds = queries.applicable_operations(post_tag)
        assert OperationKind.LOOKUP_OBJECT_PERMISSIONS not in kinds
        names = [c.operation_name for c in queries.create_model_queries(post_tag)]
        assert "lookup_object_permissions" not in names
        assert names.count("upsert_single_child_of_tag") == 1

    def test_kind_filter(self, comment):
        ctxs = queries.create_model_queries(comment, [OperationKind.LIST, OperationKind.INSERT])
        assert [c.operation_name for c in ctxs] == ["insert", "list"]

    def test_generate_operation_accepts_plain_strings(self, comment):
        (ctx,) = queries.generate_operation(comment, "delete")
        assert ctx.operation_name == "delete"

    def test_operation_names_unique_per_model(self, models):
        for model in models:
            names = [c.operation_name for c in queries.create_model_queries(model)]
            assert len(names) == len(set(names)), model.name


# ---------------------------------------------------------------------------
# Tenancy and binding invariants across every model
# ---------------------------------------------------------------------------


class TestTenancy:
    def _table_queries(self, model):
        return [
            c for c in queries.create_model_queries(model)
            if c.operation_name != "lookup_object_permissions"
        ]

    def test_tenant_models_always_scope_by_organization(self, models):
        for model in models:
            if model.is_global:
                continue
            for ctx in self._table_queries(model):
                assert "organization_id" in ctx.bindings, (model.name, ctx.operation_name)
                assert "organization_id" in ctx.sql_text

    def test_global_models_never_mention_organization(self, models):
        for model in models:
            if not model.is_global:
                continue
            for ctx in self._table_queries(model):
                assert "organization_id" not in ctx.sql_text, ctx.operation_name
                assert "organization_id" not in ctx.bindings

    def test_every_placeholder_is_bound(self, models):
        for model in models:
            for ctx in queries.create_model_queries(model):
                for i in range(1, ctx.num_bindings + 1):
                    assert f"${i}" in ctx.sql_text, (model.name, ctx.operation_name, i)
