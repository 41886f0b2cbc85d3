"""Unit tests for cache key builders and the TTL table.

This module tests:
- build_key formats with and without params
- Order-independence of parameter hashing
- Counter, sorted-set and category pattern keys
- Wrapper identifier shapes
- build_query_id determinism
- default_ttl table and fallback
"""

import re
from datetime import datetime

import pytest

from sichr.cache.keys import (
    KEY_PREFIX,
    analytics_key,
    build_key,
    build_query_id,
    canonical_json,
    category_pattern,
    counter_key,
    location_key,
    normalize_address,
    sorted_set_key,
)
from sichr.cache.ttl import CATEGORY_TTLS, COUNTER_TTL, DEFAULT_TTL, default_ttl


# ==================== build_key ====================


@pytest.mark.unit
def test_build_key_without_params():
    assert build_key("apartments", "42") == f"{KEY_PREFIX}:apartments:42"


@pytest.mark.unit
def test_build_key_empty_params_same_as_none():
    assert build_key("apartments", "42", {}) == build_key("apartments", "42")
    assert build_key("apartments", "42", None) == build_key("apartments", "42")


@pytest.mark.unit
def test_build_key_with_params_appends_short_hash():
    key = build_key("search", "apartments", {"city": "Berlin"})

    prefix, suffix = key.rsplit(":", 1)
    assert prefix == f"{KEY_PREFIX}:search:apartments"
    assert re.fullmatch(r"[0-9a-f]{8}", suffix)


@pytest.mark.unit
def test_build_key_param_order_does_not_matter():
    first = build_key("search", "apartments", {"a": 1, "b": 2, "c": {"y": 1, "x": 2}})
    second = build_key("search", "apartments", {"c": {"x": 2, "y": 1}, "b": 2, "a": 1})

    assert first == second


@pytest.mark.unit
def test_build_key_different_params_differ():
    assert build_key("search", "apartments", {}) != build_key("search", "apartments", {"x": 1})
    assert build_key("search", "apartments", {"x": 1}) != build_key("search", "apartments", {"x": 2})


@pytest.mark.unit
def test_build_key_accepts_non_json_values():
    key = build_key("analytics", "daily", {"since": datetime(2025, 1, 1)})
    assert key.startswith(f"{KEY_PREFIX}:analytics:daily:")


@pytest.mark.unit
def test_canonical_json_sorts_nested_keys():
    assert canonical_json({"b": 2, "a": {"d": 1, "c": 0}}) == '{"a":{"c":0,"d":1},"b":2}'


@pytest.mark.unit
def test_build_key_with_mixed_key_types():
    key = build_key("search", "apartments", {"a": 1, 2: "b", "nested": {3: "x", "y": 4}})

    assert key.startswith(f"{KEY_PREFIX}:search:apartments:")
    assert canonical_json({"a": 1, 2: "b"}) == '{"2":"b","a":1}'


# ==================== Namespaced keys ====================


@pytest.mark.unit
def test_category_pattern():
    assert category_pattern("apartments") == f"{KEY_PREFIX}:apartments:*"


@pytest.mark.unit
def test_counter_key_lives_in_counter_namespace():
    key = counter_key("views", "42")

    assert key.startswith(f"{KEY_PREFIX}:counter:views:")
    assert key == build_key("counter", "views", {"id": "42"})
    assert counter_key("views", "42") != counter_key("views", "43")


@pytest.mark.unit
def test_sorted_set_key():
    assert sorted_set_key("top_landlords") == f"{KEY_PREFIX}:sorted:top_landlords"


@pytest.mark.unit
def test_wrapper_identifiers():
    assert normalize_address("Hauptstraße 5, 10115 Berlin") == "hauptstrae510115berlin"
    assert normalize_address("  MAIN st.") == "mainst"
    assert location_key(52.52, 13.405, "school", 1000) == "52.52_13.405_school_1000"
    assert analytics_key("new_users", "24h") == "new_users_24h"


# ==================== build_query_id ====================


@pytest.mark.unit
def test_build_query_id_is_32_hex_chars():
    query_id = build_query_id("apartments", {"sql": "SELECT * FROM apartments", "params": []})
    assert re.fullmatch(r"[0-9a-f]{32}", query_id)


@pytest.mark.unit
def test_build_query_id_is_deterministic_and_order_independent():
    first = build_query_id("apartments", {"sql": "SELECT 1", "params": [1]})
    second = build_query_id("apartments", {"params": [1], "sql": "SELECT 1"})
    assert first == second


@pytest.mark.unit
def test_build_query_id_depends_on_table_and_shape():
    shape = {"sql": "SELECT 1", "params": []}
    assert build_query_id("apartments", shape) != build_query_id("users", shape)
    assert build_query_id("apartments", shape) != build_query_id("apartments", {"sql": "SELECT 2", "params": []})


# ==================== TTL table ====================


@pytest.mark.unit
@pytest.mark.parametrize(
    "category,expected",
    [
        ("apartments", 900),
        ("users", 600),
        ("search", 300),
        ("geocoding", 3600),
        ("places", 1800),
        ("analytics", 60),
        ("session", 86400),
        ("static", 604800),
    ],
)
def test_default_ttl_table(category, expected):
    assert default_ttl(category) == expected


@pytest.mark.unit
def test_default_ttl_unknown_category_falls_back():
    assert default_ttl("unknown-category") == DEFAULT_TTL == 300


@pytest.mark.unit
def test_counter_ttl_is_one_day():
    assert COUNTER_TTL == 86400
    assert "counter" not in CATEGORY_TTLS
