"""Vector serialization — JSON text form and store-native float32 form.

Every embedding is kept in two shapes: a JSON array of numbers (portable,
human-readable) and a packed little-endian float32 blob (what the store's
vector column holds).  Both decode back to the same ``list[float]`` within
float32 precision.
"""

from __future__ import annotations

import json
import logging
import math
from collections.abc import Sequence
from typing import TypeAlias

import numpy as np

from nimscope.exceptions import SerializationError

logger = logging.getLogger(__name__)

NATIVE_DTYPE = np.dtype("<f4")

VectorLike: TypeAlias = "Sequence[float] | np.ndarray | str | bytes | None"


def embedding_to_json(embedding: Sequence[float] | np.ndarray) -> str:
    """Render *embedding* as a JSON array of numbers.

    >>> embedding_to_json([0.5, -1.0])
    '[0.5, -1.0]'
    """
    return json.dumps([float(v) for v in embedding])


def parse_embedding(text: str) -> list[float]:
    """Strictly parse a JSON array of numbers.

    Raises :class:`SerializationError` on anything else.
    """
    try:
        data = json.loads(text)
    except (TypeError, ValueError) as e:
        msg = f"Not a JSON array: {e}"
        raise SerializationError(msg) from e
    if not isinstance(data, list):
        msg = f"Expected a JSON array, got {type(data).__name__}"
        raise SerializationError(msg)
    values: list[float] = []
    for item in data:
        # bool is an int subclass; reject it explicitly
        if isinstance(item, bool) or not isinstance(item, int | float):
            msg = f"Non-numeric vector element: {item!r}"
            raise SerializationError(msg)
        value = float(item)
        if not math.isfinite(value):
            msg = f"Non-finite vector element: {item!r}"
            raise SerializationError(msg)
        values.append(value)
    return values


def json_to_embedding(text: str) -> list[float]:
    """Parse a JSON array of numbers; malformed input yields ``[]``."""
    try:
        return parse_embedding(text)
    except SerializationError as e:
        logger.debug("Discarding malformed embedding text: %s", e)
        return []


def embedding_to_native(embedding: Sequence[float] | np.ndarray) -> bytes:
    """Pack *embedding* into the store-native float32 blob."""
    return np.asarray(embedding, dtype=NATIVE_DTYPE).tobytes()


def native_to_embedding(blob: bytes | None) -> list[float]:
    """Unpack a store-native blob; empty or misaligned input yields ``[]``."""
    if not blob:
        return []
    if len(blob) % NATIVE_DTYPE.itemsize:
        logger.debug("Discarding misaligned vector blob of %d bytes", len(blob))
        return []
    return np.frombuffer(blob, dtype=NATIVE_DTYPE).astype(float).tolist()


def json_to_native(text: str) -> bytes:
    """Convert the JSON form straight to the native form (``b""`` if malformed)."""
    return embedding_to_native(json_to_embedding(text))


def native_to_json(blob: bytes | None) -> str:
    """Convert the native form straight to the JSON form."""
    return embedding_to_json(native_to_embedding(blob))


def coerce_embedding(value: VectorLike) -> list[float] | None:
    """Normalize any accepted vector representation to ``list[float]``.

    ``None``, ``""`` and empty sequences mean "no vector" and return
    ``None``.  JSON text and native blobs are decoded; malformed text is
    treated as absent.
    """
    if value is None:
        return None
    if isinstance(value, str):
        if not value.strip():
            return None
        vector = json_to_embedding(value)
    elif isinstance(value, bytes | bytearray | memoryview):
        vector = native_to_embedding(bytes(value))
    else:
        vector = [float(v) for v in value]
    return vector or None
