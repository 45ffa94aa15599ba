# Overview: Service-layer operations for the authorization graph; adjacency, visibility and integrity checks.

"""
Authorization Graph Service

The node store is flat: each AuthorizationNode points at its parent via
parent_authorization_id. This module derives adjacency from those pointers
and answers traversal questions one hop at a time.

VISIBILITY RULE (product requirement, not an optimization):
    visible(actor) = {nodes where actor is grantor} U {nodes where actor is grantee}

Depth is exactly 1. An actor two hops away is invisible even though the
pointers connect them, so nothing here returns a transitive closure to a
caller. The only multi-hop walk is detect_cycle, which is internal and
returns nothing but a verdict.

INTEGRITY:
- A parent must allow sub-authorization.
- Inside one tier company the parent pointers form a tree rooted at level 0.
- A grant may not loop back to an actor already upstream in its chain.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP

from ..errors import GraphCycleError, NotFoundError, SubAuthorizationForbiddenError
from ..extensions import db
from ..models import AuthorizationNode
from ..models.authorization import NODE_STATUS_ACTIVE
from ..time_utils import to_utc_z
from ..validation import PERCENT_SCALE
from .concurrency import lock_for_update


@dataclass(frozen=True)
class VisibleSubset:
    """Depth-1 projection of the graph for one actor."""
    actor_id: str
    granted: list[AuthorizationNode] = field(default_factory=list)
    received: list[AuthorizationNode] = field(default_factory=list)

    @property
    def nodes(self) -> list[AuthorizationNode]:
        merged: "OrderedDict[int, AuthorizationNode]" = OrderedDict()
        for node in self.received + self.granted:
            merged.setdefault(node.id, node)
        return list(merged.values())

    def contains(self, node_id: int) -> bool:
        return any(node.id == node_id for node in self.nodes)


# =============================================================================
# LOOKUPS
# =============================================================================

def get_node(node_id: int) -> AuthorizationNode:
    node = db.session.get(AuthorizationNode, node_id)
    if not node:
        raise NotFoundError(f"Authorization {node_id} not found", entity_id=node_id)
    return node


def children_of(node_id: int, *, status: str | None = None) -> list[AuthorizationNode]:
    """Direct children only: the grants issued by this node's grantee under it."""
    get_node(node_id)
    query = db.session.query(AuthorizationNode).filter_by(parent_authorization_id=node_id)
    if status:
        query = query.filter_by(status=status)
    return query.order_by(AuthorizationNode.created_at.asc(), AuthorizationNode.id.asc()).all()


def parent_of(node_id: int) -> AuthorizationNode | None:
    """Direct parent only; None at tier level 0."""
    node = get_node(node_id)
    if node.parent_authorization_id is None:
        return None
    return db.session.get(AuthorizationNode, node.parent_authorization_id)


def list_granted(actor_id: str, *, status: str | None = None) -> list[AuthorizationNode]:
    query = db.session.query(AuthorizationNode).filter_by(grantor_id=actor_id)
    if status:
        query = query.filter_by(status=status)
    return query.order_by(AuthorizationNode.created_at.asc(), AuthorizationNode.id.asc()).all()


def list_received(actor_id: str, *, status: str | None = None) -> list[AuthorizationNode]:
    query = db.session.query(AuthorizationNode).filter_by(grantee_id=actor_id)
    if status:
        query = query.filter_by(status=status)
    return query.order_by(AuthorizationNode.created_at.asc(), AuthorizationNode.id.asc()).all()


def visible_subset_for(actor_id: str, *, status: str | None = None) -> VisibleSubset:
    return VisibleSubset(
        actor_id=actor_id,
        granted=list_granted(actor_id, status=status),
        received=list_received(actor_id, status=status),
    )


def is_visible_to(node: AuthorizationNode, actor_id: str) -> bool:
    return actor_id in (node.grantor_id, node.grantee_id)


def tier_root_of(node: AuthorizationNode, *, lock: bool = False) -> AuthorizationNode:
    """
    Level-0 node of the node's tier company. Internal: callers use it for
    catalog ownership and locking, never to show the root to an actor.
    """
    if node.tier_level == 0 or not node.tier_company_id:
        return node
    query = db.session.query(AuthorizationNode).filter_by(
        tier_company_id=node.tier_company_id, tier_level=0
    )
    if lock:
        query = lock_for_update(query)
    root = query.order_by(AuthorizationNode.id.asc()).first()
    if root is None:
        raise GraphCycleError(
            f"Tier company {node.tier_company_id} has no level-0 authorization",
            field="tierCompanyId",
            entity_id=node.id,
        )
    return root


# =============================================================================
# INTEGRITY
# =============================================================================

def detect_cycle(
    candidate_parent_id: int,
    candidate_child_id: int | None = None,
    *,
    grantee_id: str | None = None,
) -> None:
    """
    Validate linking a child under candidate_parent_id. Raises, never writes.

    Raises:
        NotFoundError: parent does not exist
        SubAuthorizationForbiddenError: parent does not allow sub-authorization
            (a GraphCycleError subclass)
        GraphCycleError: the child (node id) or its grantee (actor id) is
            already upstream, or the parent chain itself is corrupt
    """
    parent = get_node(candidate_parent_id)

    if not parent.allow_sub_authorization:
        raise SubAuthorizationForbiddenError(
            f"Authorization {parent.id} does not allow sub-authorization",
            field="parentAuthorizationId",
            entity_id=parent.id,
        )

    if grantee_id is not None and grantee_id == parent.grantee_id:
        raise GraphCycleError(
            "Grantee cannot be authorized under its own authorization",
            field="granteeId",
            entity_id=parent.id,
        )

    # The walk is bounded by the store size; revisiting a node means the
    # stored pointers already contain a loop.
    limit = db.session.query(AuthorizationNode).count()
    seen: set[int] = set()
    current = parent
    while current is not None:
        if candidate_child_id is not None and current.id == candidate_child_id:
            raise GraphCycleError(
                f"Linking {candidate_child_id} under {candidate_parent_id} would create a cycle",
                field="parentAuthorizationId",
                entity_id=candidate_parent_id,
            )
        if grantee_id is not None and current.grantor_id == grantee_id:
            raise GraphCycleError(
                "Grantee already appears upstream in this authorization chain",
                field="granteeId",
                entity_id=current.id,
            )
        if current.id in seen or len(seen) > limit:
            raise GraphCycleError(
                f"Authorization chain above {candidate_parent_id} contains a cycle",
                field="parentAuthorizationId",
                entity_id=current.id,
            )
        seen.add(current.id)

        if current.parent_authorization_id is None:
            if current.tier_level != 0:
                raise GraphCycleError(
                    f"Authorization {current.id} has no parent but sits at tier level {current.tier_level}",
                    field="parentAuthorizationId",
                    entity_id=current.id,
                )
            break

        upstream = db.session.get(AuthorizationNode, current.parent_authorization_id)
        if upstream is None or upstream.tier_company_id != current.tier_company_id:
            raise GraphCycleError(
                f"Authorization {current.id} points outside its tier company",
                field="parentAuthorizationId",
                entity_id=current.id,
            )
        if upstream.tier_level != current.tier_level - 1:
            raise GraphCycleError(
                f"Authorization {current.id} is not one level below its parent",
                field="parentAuthorizationId",
                entity_id=current.id,
            )
        current = upstream


# =============================================================================
# TIER COMPANY GROUPING
# =============================================================================

def company_key(node: AuthorizationNode) -> str:
    """Grouping key: tier_company_id, else a synthetic key from the company name."""
    if node.tier_company_id:
        return node.tier_company_id
    if node.tier_company_name and node.tier_company_name.strip():
        return f"name:{node.tier_company_name.strip().lower()}"
    return f"node:{node.id}"


def _average_percent(values_bps: list[int]) -> float | None:
    if not values_bps:
        return None
    avg = Decimal(sum(values_bps)) / Decimal(len(values_bps)) / Decimal(PERCENT_SCALE)
    return float(avg.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def group_by_tier_company(nodes: list[AuthorizationNode]) -> list[dict]:
    """
    Partition nodes by tier company and aggregate each group.

    Per company: member count, average minDiscountRate and commissionRate
    (percent, two decimals), the earliest created_at as the founding
    timestamp, and the name carried by the shallowest member.
    """
    groups: "OrderedDict[str, list[AuthorizationNode]]" = OrderedDict()
    for node in nodes:
        groups.setdefault(company_key(node), []).append(node)

    summaries = []
    for key, members in groups.items():
        root = min(members, key=lambda n: (n.tier_level, n.id))
        created = [n.created_at for n in members if n.created_at is not None]
        founded_at = min(created) if created else None
        summaries.append({
            "tier_company_id": key,
            "tier_company_name": root.tier_company_name,
            "member_count": len(members),
            "active_count": sum(1 for n in members if n.status == NODE_STATUS_ACTIVE),
            "max_tier_level": max(n.tier_level for n in members),
            "avg_min_discount_rate": _average_percent([n.min_discount_rate_bps for n in members]),
            "avg_commission_rate": _average_percent([n.commission_rate_bps for n in members]),
            "founded_at": to_utc_z(founded_at),
            "_founded_sort": founded_at,
        })

    summaries.sort(key=lambda s: (s["_founded_sort"] is None, s["_founded_sort"] or 0, s["tier_company_id"]))
    for summary in summaries:
        summary.pop("_founded_sort")
    return summaries


def tier_view_for(actor_id: str) -> dict:
    """
    Bounded-depth hierarchy for one actor: who granted to me, whom I granted,
    grouped by tier company. Never reaches beyond depth 1.
    """
    subset = visible_subset_for(actor_id)
    return {
        "actor_id": actor_id,
        "received": [dict(node.to_dict(), relation="received") for node in subset.received],
        "granted": [dict(node.to_dict(), relation="granted") for node in subset.granted],
        "companies": group_by_tier_company(subset.nodes),
    }
