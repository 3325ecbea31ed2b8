"""
EntitySpine - entity-relational mapping on SQLAlchemy Core.

Declarative models with casts, dirty tracking, relations (belongs-to,
has-one, has-many, belongs-to-many), lifecycle hooks, soft deletes,
optimistic locking and a model-aware query facade.
"""

__version__ = "0.1.0"

from entityspine.casts import Cast, EnumCast
from entityspine.db import Database, SqlQueryBuilder, create_engine
from entityspine.definition import ModelDefinition, ModelOptions, accessor, mutator
from entityspine.errors import (
    EntitySpineError,
    ErrorCategory,
    ErrorContext,
    InvalidKeyError,
    InvalidRelationError,
    LazyLoadingViolationError,
    MassAssignmentError,
    ModelNotFoundError,
    OptimisticLockError,
    QueryError,
    RelationNotFoundError,
    ValidationError,
)
from entityspine.events import EventDispatcher, Hook, HookResult, Observer
from entityspine.keys import KeyType
from entityspine.logging import configure_logging, entity_context, get_logger
from entityspine.manager import ModelManager
from entityspine.model import LifecycleState, Model
from entityspine.query import ModelQuery, Page
from entityspine.relations import (
    BelongsTo,
    BelongsToMany,
    BoundRelation,
    HasMany,
    HasOne,
    SyncResult,
)
from entityspine.scopes import TenantScope, local_scope
from entityspine.settings import OrmSettings, clear_settings_cache, get_settings
from entityspine.validation import NullValidator, PydanticValidator

__all__ = [
    "__version__",
    # Models
    "Model",
    "ModelDefinition",
    "ModelOptions",
    "LifecycleState",
    "accessor",
    "mutator",
    "local_scope",
    "TenantScope",
    "Cast",
    "EnumCast",
    "KeyType",
    # Relations
    "BelongsTo",
    "BelongsToMany",
    "BoundRelation",
    "HasMany",
    "HasOne",
    "SyncResult",
    # Querying
    "ModelQuery",
    "Page",
    # Runtime
    "ModelManager",
    "Database",
    "SqlQueryBuilder",
    "create_engine",
    "EventDispatcher",
    "Hook",
    "HookResult",
    "Observer",
    "NullValidator",
    "PydanticValidator",
    # Configuration / logging
    "OrmSettings",
    "get_settings",
    "clear_settings_cache",
    "configure_logging",
    "entity_context",
    "get_logger",
    # Errors
    "EntitySpineError",
    "ErrorCategory",
    "ErrorContext",
    "MassAssignmentError",
    "ValidationError",
    "ModelNotFoundError",
    "RelationNotFoundError",
    "InvalidRelationError",
    "LazyLoadingViolationError",
    "OptimisticLockError",
    "InvalidKeyError",
    "QueryError",
]
