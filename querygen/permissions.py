# File: querygen/permissions.py
"""
NexaFlow QueryGen - Permission Clauses
=======================================
SQL fragments that consult the ``<auth_schema>.permissions`` and
``<auth_schema>.object_permissions`` tables.  Permission names are
compile-time constants from the model definition and are emitted as
escaped string literals; organization, actor ids and object id always
travel as bindings.

``org_admin`` implies every permission in its organization.
"""

from __future__ import annotations

import logging
from typing import List, Sequence

from querygen import bindings
from querygen.models import ModelSchema
from querygen.query_builder import QueryBuilder
from querygen.utils import sql_string

logger: logging.Logger = logging.getLogger("querygen.permissions")

ORG_ADMIN_PERMISSION: str = "org_admin"

# Highest tier first; the lookup answers with the first tier held.
PERMISSION_TIERS: Sequence[str] = ("owner", "write", "read")


def permissions_check_where_clause(
    model: ModelSchema,
    q: QueryBuilder,
    perms: Sequence[str],
) -> None:
    """Append an ``EXISTS`` subquery true when any actor holds one of *perms*."""
    organization: str = q.create_binding(bindings.ORGANIZATION)
    actor_ids: str = q.create_binding(bindings.ACTOR_IDS)
    perm_list: str = ", ".join(sql_string(p) for p in perms)
    q.push(
        f"EXISTS (SELECT 1 FROM {model.auth_schema}.permissions "
        f"WHERE organization_id = {organization} "
        f"AND actor_id = ANY({actor_ids}) "
        f"AND permission IN ({perm_list}))"
    )


def object_permissions_value_query(model: ModelSchema, q: QueryBuilder) -> None:
    """
    Append a query returning the highest tier any actor holds on one object.

    The single ``_permission`` column is ``'owner'``, ``'write'``, ``'read'``
    or NULL.  Bindings are allocated in the order organization, actor ids,
    object id.
    """
    admin: str = sql_string(ORG_ADMIN_PERMISSION)
    owner: str = sql_string(model.owner_permission)
    write: str = sql_string(model.write_permission)
    read: str = sql_string(model.read_permission)

    organization: str = q.create_binding(bindings.ORGANIZATION)
    actor_ids: str = q.create_binding(bindings.ACTOR_IDS)
    object_id: str = q.create_binding(bindings.ID)

    q.push(
        f"SELECT CASE "
        f"WHEN bool_or(permission IN ({admin}, {owner})) THEN {sql_string(PERMISSION_TIERS[0])} "
        f"WHEN bool_or(permission = {write}) THEN {sql_string(PERMISSION_TIERS[1])} "
        f"WHEN bool_or(permission = {read}) THEN {sql_string(PERMISSION_TIERS[2])} "
        f"ELSE NULL END AS _permission "
        f"FROM {model.auth_schema}.object_permissions "
        f"WHERE organization_id = {organization} "
        f"AND actor_id = ANY({actor_ids}) "
        f"AND object_id = {object_id} "
        f"AND permission IN ({admin}, {owner}, {write}, {read})"
    )


__all__: List[str] = [
    "ORG_ADMIN_PERMISSION",
    "PERMISSION_TIERS",
    "permissions_check_where_clause",
    "object_permissions_value_query",
]

logger.debug("querygen.permissions loaded.")
