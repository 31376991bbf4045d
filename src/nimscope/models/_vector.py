"""Native vector column type."""

from __future__ import annotations

from typing import Any

from sqlalchemy import LargeBinary
from sqlalchemy.types import TypeDecorator

from nimscope.embeddings.serialization import embedding_to_native, native_to_embedding


class VectorType(TypeDecorator[list[float]]):
    """Stores ``list[float]`` as a packed float32 blob.

    ``None`` and empty vectors are stored as SQL ``NULL``.
    """

    impl = LargeBinary
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Any) -> bytes | None:
        if value is None or len(value) == 0:
            return None
        return embedding_to_native(value)

    def process_result_value(self, value: Any, dialect: Any) -> list[float] | None:
        if value is None:
            return None
        return native_to_embedding(value) or None
