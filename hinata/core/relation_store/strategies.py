"""
Pluggable relation derivation and cluster estimation.

The defaults derive nothing and estimate ``ceil(n / 10)`` clusters.
``TransitiveDerivation`` is opt-in and closes two-hop chains into
lower-confidence DERIVED relations.
"""

import math
from abc import ABC, abstractmethod
from collections.abc import Callable

from pydantic import BaseModel, Field

from hinata.models.relation import GraphEdge, GraphNode, Relation, RelationType

RelationLookup = Callable[[str], list[Relation]]


class DerivedRelation(BaseModel):
    """Relation proposed by a derivation strategy."""

    source_id: str
    target_id: str
    strength: float = Field(..., ge=0.0, le=1.0)
    depth: int = Field(..., ge=2)
    derived_from: list[str] = Field(default_factory=list)


class DerivationStrategy(ABC):
    """Proposes relations implied by a newly created one."""

    @abstractmethod
    def derive(
        self,
        relation: Relation,
        outgoing: RelationLookup,
        incoming: RelationLookup,
    ) -> list[DerivedRelation]:
        """
        Propose derived relations.

        Args:
            relation: The relation just created
            outgoing: Relations whose source is the given item
            incoming: Relations whose target is the given item

        Returns:
            Derived relations to upsert (may be empty)
        """
        pass


class NoDerivation(DerivationStrategy):
    """Default strategy: derives nothing."""

    def derive(self, relation, outgoing, incoming) -> list[DerivedRelation]:
        return []


def relation_depth(relation: Relation) -> int:
    """Chain length a relation stands for (1 unless it was derived)."""
    if relation.type == RelationType.DERIVED:
        return int(relation.metadata.properties.get("depth", 2))
    return 1


class TransitiveDerivation(DerivationStrategy):
    """
    Closes two-hop chains.

    For a new relation A->B, every B->C yields A->C and every Z->A yields
    Z->B, each at ``s1 * s2 * decay``. Chains longer than ``max_depth``
    and results weaker than ``min_strength`` are dropped.
    """

    def __init__(self, max_depth: int = 3, decay: float = 0.5, min_strength: float = 0.1):
        self.max_depth = max_depth
        self.decay = decay
        self.min_strength = min_strength

    def _combine(self, first: Relation, second: Relation) -> DerivedRelation | None:
        if first.source_id == second.target_id:
            return None
        depth = relation_depth(first) + relation_depth(second)
        strength = first.strength * second.strength * self.decay
        if depth > self.max_depth or strength < self.min_strength:
            return None
        return DerivedRelation(
            source_id=first.source_id,
            target_id=second.target_id,
            strength=strength,
            depth=depth,
            derived_from=[first.id, second.id],
        )

    def derive(self, relation, outgoing, incoming) -> list[DerivedRelation]:
        proposals = [self._combine(relation, nxt) for nxt in outgoing(relation.target_id)]
        proposals += [self._combine(prev, relation) for prev in incoming(relation.source_id)]
        return [p for p in proposals if p is not None]


class ClusterEstimator(ABC):
    """Estimates the number of clusters in a graph walk."""

    @abstractmethod
    def estimate(self, nodes: list[GraphNode], edges: list[GraphEdge]) -> int:
        pass


class CeilingClusterEstimator(ClusterEstimator):
    """Default estimator: one cluster per ten nodes, rounded up."""

    def __init__(self, nodes_per_cluster: int = 10):
        self.nodes_per_cluster = nodes_per_cluster

    def estimate(self, nodes, edges) -> int:
        return math.ceil(len(nodes) / self.nodes_per_cluster)
