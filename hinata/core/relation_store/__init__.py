"""Relation storage and graph traversal."""

from hinata.core.relation_store.relation_store import RelationStore, build_derivation_strategy
from hinata.core.relation_store.strategies import (
    CeilingClusterEstimator,
    ClusterEstimator,
    DerivationStrategy,
    DerivedRelation,
    NoDerivation,
    TransitiveDerivation,
)

__all__ = [
    "RelationStore",
    "build_derivation_strategy",
    "DerivationStrategy",
    "DerivedRelation",
    "NoDerivation",
    "TransitiveDerivation",
    "ClusterEstimator",
    "CeilingClusterEstimator",
]
