"""Tests for the stored-vector parse/serialize boundary."""

import numpy as np
import pytest
from google.cloud.firestore_v1.vector import Vector

from src.profiles.vectors import parse_vector, to_firestore_vector


class TestParseVector:

    def test_firestore_vector(self):
        parsed = parse_vector(Vector([0.1, 0.2, 0.3]))
        np.testing.assert_allclose(parsed, [0.1, 0.2, 0.3])
        assert parsed.dtype == np.float64

    def test_plain_list(self):
        np.testing.assert_allclose(parse_vector([1, 2, 3]), [1.0, 2.0, 3.0])

    def test_json_string(self):
        np.testing.assert_allclose(parse_vector("[0.5, -0.5]"), [0.5, -0.5])

    def test_numpy_array(self):
        np.testing.assert_allclose(parse_vector(np.array([1.0, 2.0])), [1.0, 2.0])

    @pytest.mark.parametrize("value", [
        None,
        "not a vector",
        "{\"a\": 1}",
        [],
        [[1.0, 2.0], [3.0, 4.0]],
        ["a", "b"],
        [1.0, float('nan')],
        [1.0, float('inf')],
    ])
    def test_malformed_is_absent(self, value):
        assert parse_vector(value) is None

    def test_dimension_mismatch(self):
        assert parse_vector([1.0, 2.0, 3.0], dimensions=768) is None
        assert parse_vector([1.0, 2.0, 3.0], dimensions=3) is not None

    def test_never_returns_zero_vector_for_bad_input(self):
        for value in ("[]", "garbage", [None, None]):
            assert parse_vector(value) is None


def test_to_firestore_vector_round_trip():
    stored = to_firestore_vector(np.array([0.25, 0.75]))
    assert isinstance(stored, Vector)
    np.testing.assert_allclose(parse_vector(stored), [0.25, 0.75])
