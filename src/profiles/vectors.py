"""
Single parse/serialize path for stored vectors.

Firestore hands vectors back as Vector objects, older documents carry plain
lists, and a few imports stored them as JSON strings. Everything funnels
through parse_vector() so the rest of the code only ever sees a float numpy
array or None.
"""

import json
import logging
from typing import Any, Optional, Sequence

import numpy as np
from google.cloud.firestore_v1.vector import Vector

logger = logging.getLogger(__name__)


def parse_vector(value: Any, dimensions: Optional[int] = None) -> Optional[np.ndarray]:
    """
    Parse a stored vector into a 1D float array.

    Args:
        value: Firestore Vector, list/tuple, numpy array or JSON string
        dimensions: Expected length; mismatches are rejected when given

    Returns:
        float64 array, or None if the value is missing or malformed.
        Malformed input is never coerced into a zero vector.
    """
    if value is None:
        return None

    if hasattr(value, 'to_map_value'):
        map_value = value.to_map_value()
        raw = map_value.get('value', map_value) if isinstance(map_value, dict) else map_value
    elif isinstance(value, str):
        try:
            raw = json.loads(value)
        except (json.JSONDecodeError, TypeError):
            logger.warning("Unparsable vector string, treating as absent")
            return None
    else:
        raw = value

    try:
        array = np.asarray(raw, dtype=np.float64)
    except (TypeError, ValueError):
        logger.warning(f"Vector of type {type(value).__name__} is not numeric, treating as absent")
        return None

    if array.ndim != 1 or array.size == 0:
        return None

    if dimensions is not None and array.size != dimensions:
        logger.warning(f"Vector has {array.size} dimensions, expected {dimensions}")
        return None

    if not np.all(np.isfinite(array)):
        logger.warning("Vector contains non-finite values, treating as absent")
        return None

    return array


def to_firestore_vector(array: Sequence[float]) -> Vector:
    """Serialize a vector for storage."""
    return Vector([float(x) for x in array])
