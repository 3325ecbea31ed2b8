"""Surrogate primary key generation for non-incrementing models."""

from __future__ import annotations

import secrets
import uuid
from enum import Enum

from entityspine.errors import InvalidKeyError
from entityspine.timestamps import generate_ulid


class KeyType(str, Enum):
    INT = "int"
    STRING = "string"
    UUID = "uuid"
    ULID = "ulid"


def generate_key(key_type: str, model: str) -> str:
    """Generate a fresh key of ``key_type`` for ``model``.

    ``string`` keys are 32 lowercase hex characters. Integer keys cannot be
    generated client-side and raise :class:`InvalidKeyError`, as does any
    unknown type.
    """
    kind = str(key_type.value if isinstance(key_type, KeyType) else key_type).lower()
    if kind == KeyType.UUID.value:
        return str(uuid.uuid4())
    if kind == KeyType.ULID.value:
        return generate_ulid()
    if kind == KeyType.STRING.value:
        return secrets.token_hex(16)
    raise InvalidKeyError(model, kind)
