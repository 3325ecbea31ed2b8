"""
Relation descriptors.

Declared as class attributes on a model; each one loads lazily for a single
entity or in one batched query for many (see :mod:`entityspine.relations.base`).
"""

from entityspine.relations.base import BoundRelation, Relation, RelationKeys
from entityspine.relations.belongs_to import BelongsTo
from entityspine.relations.belongs_to_many import BelongsToMany, SyncResult
from entityspine.relations.has_many import HasMany, HasOne, HasOneOrMany

__all__ = [
    "BelongsTo",
    "BelongsToMany",
    "BoundRelation",
    "HasMany",
    "HasOne",
    "HasOneOrMany",
    "Relation",
    "RelationKeys",
    "SyncResult",
]
