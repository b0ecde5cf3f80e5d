"""
Tenant erasure cascade.

The tenant's data is described as a dependency graph: every node names the
tables holding foreign keys into it (its dependents). A node is deleted only
after all of its dependents, so adding a table is a data change here rather
than a re-ordering of hand-written delete calls. Ties are broken by
declaration order, which keeps the resulting order stable and reviewable.
"""

import heapq
from dataclasses import dataclass
from enum import Enum
from typing import Any, Sequence
from uuid import UUID

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from clearstack.models.engagement import BetaFeedback, UserBadge
from clearstack.models.inventory import Contract, Department, Entity, Software, Usage
from clearstack.models.notification import (
    AlertDispatchMarker,
    Notification,
    OutboundEvent,
    PushSubscription,
)
from clearstack.models.tenant import (
    AlertSetting,
    FeatureFlag,
    IntegrationSetting,
    Tenant,
    User,
)
from clearstack.models.workflow import (
    EconomyItem,
    ImportBatch,
    PurchaseProject,
    Review,
    SoftwareRequest,
    Task,
    Vote,
)
from clearstack.modules.governance.domain.security.audit_log import AuditLog

logger = structlog.get_logger()


class PurgeScope(str, Enum):
    """How a table's rows are tied to the tenant being erased."""

    TENANT = "tenant"  # column holds the tenant id
    USER = "user"  # column holds the id of one of the tenant's users
    ENTITY = "entity"  # column holds the id of one of the tenant's entities


@dataclass(frozen=True)
class PurgeNode:
    name: str
    model: Any
    scope: PurgeScope
    column: str
    dependents: tuple[str, ...] = ()


TENANT_PURGE_GRAPH: tuple[PurgeNode, ...] = (
    PurgeNode("audit_logs", AuditLog, PurgeScope.TENANT, "tenant_id"),
    PurgeNode("outbound_events", OutboundEvent, PurgeScope.TENANT, "tenant_id"),
    PurgeNode("notifications", Notification, PurgeScope.TENANT, "tenant_id"),
    PurgeNode("alert_dispatch_markers", AlertDispatchMarker, PurgeScope.TENANT, "tenant_id"),
    PurgeNode("tasks", Task, PurgeScope.TENANT, "tenant_id"),
    PurgeNode(
        "purchase_projects", PurchaseProject, PurgeScope.TENANT, "tenant_id",
        dependents=("tasks",),
    ),
    PurgeNode("votes", Vote, PurgeScope.TENANT, "tenant_id"),
    PurgeNode(
        "requests", SoftwareRequest, PurgeScope.TENANT, "tenant_id",
        dependents=("votes", "purchase_projects"),
    ),
    PurgeNode("reviews", Review, PurgeScope.TENANT, "tenant_id"),
    PurgeNode("economy_items", EconomyItem, PurgeScope.TENANT, "tenant_id"),
    PurgeNode("import_batches", ImportBatch, PurgeScope.TENANT, "tenant_id"),
    PurgeNode("alert_settings", AlertSetting, PurgeScope.TENANT, "tenant_id"),
    PurgeNode("integration_settings", IntegrationSetting, PurgeScope.TENANT, "tenant_id"),
    PurgeNode("feature_flags", FeatureFlag, PurgeScope.TENANT, "tenant_id"),
    PurgeNode("beta_feedbacks", BetaFeedback, PurgeScope.TENANT, "tenant_id"),
    PurgeNode("push_subscriptions", PushSubscription, PurgeScope.USER, "user_id"),
    PurgeNode("user_badges", UserBadge, PurgeScope.USER, "user_id"),
    PurgeNode("usages", Usage, PurgeScope.USER, "user_id"),
    PurgeNode(
        "users", User, PurgeScope.TENANT, "tenant_id",
        dependents=(
            "push_subscriptions",
            "user_badges",
            "usages",
            "reviews",
            "requests",
            "votes",
            "tasks",
            "import_batches",
            "beta_feedbacks",
            "notifications",
            "alert_dispatch_markers",
        ),
    ),
    PurgeNode("departments", Department, PurgeScope.ENTITY, "entity_id"),
    PurgeNode("contracts", Contract, PurgeScope.ENTITY, "entity_id"),
    PurgeNode(
        "entities", Entity, PurgeScope.TENANT, "tenant_id",
        dependents=("departments", "contracts"),
    ),
    PurgeNode(
        "softwares", Software, PurgeScope.TENANT, "tenant_id",
        dependents=("contracts", "usages", "reviews", "purchase_projects", "economy_items"),
    ),
    PurgeNode(
        "tenants", Tenant, PurgeScope.TENANT, "id",
        dependents=(
            "users",
            "entities",
            "softwares",
            "alert_settings",
            "integration_settings",
            "feature_flags",
            "reviews",
            "requests",
            "votes",
            "purchase_projects",
            "tasks",
            "economy_items",
            "import_batches",
            "beta_feedbacks",
            "notifications",
            "alert_dispatch_markers",
            "outbound_events",
        ),
    ),
)


def resolve_purge_order(graph: Sequence[PurgeNode] = TENANT_PURGE_GRAPH) -> list[PurgeNode]:
    """
    Topologically order the graph so every node follows all its dependents.

    Raises ValueError on unknown dependents or cycles.
    """
    nodes = {node.name: node for node in graph}
    position = {node.name: index for index, node in enumerate(graph)}

    blockers: dict[str, set[str]] = {}
    for node in graph:
        unknown = set(node.dependents) - nodes.keys()
        if unknown:
            raise ValueError(f"{node.name} declares unknown dependents: {sorted(unknown)}")
        blockers[node.name] = set(node.dependents)

    ready = [(position[name], name) for name, deps in blockers.items() if not deps]
    heapq.heapify(ready)
    order: list[PurgeNode] = []
    while ready:
        _, name = heapq.heappop(ready)
        order.append(nodes[name])
        for other, deps in blockers.items():
            if name in deps:
                deps.discard(name)
                if not deps:
                    heapq.heappush(ready, (position[other], other))

    if len(order) != len(nodes):
        stuck = sorted(name for name, deps in blockers.items() if deps)
        raise ValueError(f"Purge graph has a cycle involving: {stuck}")
    return order


def _scope_filter(node: PurgeNode, tenant_id: UUID) -> Any:
    column = getattr(node.model, node.column)
    if node.scope is PurgeScope.TENANT:
        return column == tenant_id
    if node.scope is PurgeScope.USER:
        return column.in_(select(User.id).where(User.tenant_id == tenant_id))
    return column.in_(select(Entity.id).where(Entity.tenant_id == tenant_id))


async def purge_tenant_rows(
    db: AsyncSession,
    tenant_id: UUID,
    graph: Sequence[PurgeNode] = TENANT_PURGE_GRAPH,
) -> dict[str, int]:
    """
    Delete every row owned by the tenant, dependents first.
    Runs inside the caller's transaction; returns per-table deleted counts.
    """
    counts: dict[str, int] = {}
    for node in resolve_purge_order(graph):
        result = await db.execute(
            delete(node.model)
            .where(_scope_filter(node, tenant_id))
            .execution_options(synchronize_session=False)
        )
        rowcount = getattr(result, "rowcount", 0)
        counts[node.name] = rowcount if isinstance(rowcount, int) and rowcount > 0 else 0
        logger.debug(
            "tenant_purge_table_cleared",
            tenant_id=str(tenant_id),
            table=node.name,
            deleted=counts[node.name],
        )
    return counts
