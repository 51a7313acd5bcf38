"""
Unit tests for cache key derivation.
"""

import re

import pytest

from shared.errors import ValidationError
from service_api_cache.app.caching.keys import (
    MAX_NAMESPACE_LENGTH,
    cache_namespace,
    canonical_method,
    generate_cache_key,
    normalize_params,
    summarize_params,
)


class TestGenerateCacheKey:
    """Test cases for generate_cache_key."""

    def test_key_is_sha256_hex(self):
        key = generate_cache_key("demo", "predictions", {"query": "weather"})
        assert len(key) == 64
        assert all(c in "0123456789abcdef" for c in key)

    def test_parameter_order_does_not_matter(self):
        a = generate_cache_key("demo", "predictions", {"query": "weather", "max_results": 10, "lang": "en"})
        b = generate_cache_key("demo", "predictions", {"lang": "en", "max_results": 10, "query": "weather"})
        assert a == b

    def test_nested_parameter_order_does_not_matter(self):
        a = generate_cache_key("demo", "reports", {"filter": {"a": 1, "b": [1, 2]}}, "POST")
        b = generate_cache_key("demo", "reports", {"filter": {"b": [1, 2], "a": 1}}, "POST")
        assert a == b

    def test_list_order_matters(self):
        a = generate_cache_key("demo", "reports", {"ids": [1, 2]})
        b = generate_cache_key("demo", "reports", {"ids": [2, 1]})
        assert a != b

    @pytest.mark.parametrize("other", ["1", 1.0, True])
    def test_type_distinctions_survive(self, other):
        assert generate_cache_key("demo", "e", {"v": 1}) != generate_cache_key("demo", "e", {"v": other})

    def test_none_values_are_ignored(self):
        a = generate_cache_key("demo", "predictions", {"query": "weather", "page": None})
        b = generate_cache_key("demo", "predictions", {"query": "weather"})
        assert a == b

    def test_none_params_equal_empty_params(self):
        assert generate_cache_key("demo", "predictions", None) == generate_cache_key("demo", "predictions", {})

    def test_each_component_changes_the_key(self):
        base = generate_cache_key("demo", "predictions", {"q": "x"}, "GET", "v1")
        assert base != generate_cache_key("other", "predictions", {"q": "x"}, "GET", "v1")
        assert base != generate_cache_key("demo", "reports", {"q": "x"}, "GET", "v1")
        assert base != generate_cache_key("demo", "predictions", {"q": "y"}, "GET", "v1")
        assert base != generate_cache_key("demo", "predictions", {"q": "x"}, "POST", "v1")
        assert base != generate_cache_key("demo", "predictions", {"q": "x"}, "GET", "v2")
        assert base != generate_cache_key("demo", "predictions", {"q": "x"}, "GET", None)

    def test_method_case_and_leading_slash_are_canonical(self):
        a = generate_cache_key("demo", "/predictions", {"q": "x"}, "get")
        b = generate_cache_key("demo", "predictions", {"q": "x"}, "GET")
        assert a == b

    def test_unicode_parameters(self):
        a = generate_cache_key("demo", "predictions", {"query": "météo 天気"})
        assert a == generate_cache_key("demo", "predictions", {"query": "météo 天気"})

    @pytest.mark.parametrize("client", ["", "demo api", "demo;drop", "démo", "a/b"])
    def test_invalid_client_names_rejected(self, client):
        with pytest.raises(ValidationError):
            generate_cache_key(client, "predictions", {})

    def test_unsupported_method_rejected(self):
        with pytest.raises(ValidationError):
            generate_cache_key("demo", "predictions", {}, "TRACE")


class TestNormalizeParams:
    """Test cases for normalize_params."""

    def test_sorts_keys_recursively_and_drops_none(self):
        normalized = normalize_params({"b": 1, "a": {"d": None, "c": 2}, "e": None})
        assert normalized == {"a": {"c": 2}, "b": 1}
        assert list(normalized) == ["a", "b"]

    def test_tuples_become_lists_and_list_nones_are_kept(self):
        assert normalize_params({"ids": (1, None, 3)}) == {"ids": [1, None, 3]}

    @pytest.mark.parametrize("params", [{1: "a"}, {"outer": {2.5: "x"}}, {(1, 2): "t"}])
    def test_non_string_keys_rejected(self, params):
        with pytest.raises(ValidationError):
            normalize_params(params)

    def test_keys_colliding_once_stringified_rejected(self):
        with pytest.raises(ValidationError):
            generate_cache_key("demo", "e", {1: "a", "1": "b"})
        with pytest.raises(ValidationError):
            generate_cache_key("demo", "e", {"1": "b", 1: "a"})

    @pytest.mark.parametrize("value", [object(), {1, 2}, b"bytes", lambda: None, float("nan"), float("inf")])
    def test_unsupported_values_rejected(self, value):
        with pytest.raises(ValidationError):
            normalize_params({"v": value})

    def test_depth_limit(self):
        params = {"v": 1}
        for _ in range(25):
            params = {"nested": params}
        with pytest.raises(ValidationError):
            normalize_params(params)

    def test_moderate_nesting_allowed(self):
        params = {"v": 1}
        for _ in range(10):
            params = {"nested": params}
        assert normalize_params(params)

    def test_params_must_be_mapping(self):
        with pytest.raises(ValidationError):
            normalize_params(["not", "a", "mapping"])

    def test_values_not_rewritten_per_method(self):
        params = {"flag": True, "count": 1, "ratio": 1.5}
        assert normalize_params(params, "GET") == normalize_params(params, "POST") == params


class TestCanonicalMethod:

    def test_upper_cases(self):
        assert canonical_method(" post ") == "POST"

    def test_rejects_non_string(self):
        with pytest.raises(ValidationError):
            canonical_method(None)


class TestCacheNamespace:
    """Test cases for cache_namespace."""

    def test_plain_and_compressed_names(self):
        assert cache_namespace("demo") == "api_cache_demo_responses"
        assert cache_namespace("demo", compressed=True) == "api_cache_demo_responses_compressed"

    def test_rewritten_names_carry_a_digest(self):
        name = cache_namespace("open--router-")
        assert re.fullmatch(r"api_cache_open_router_[0-9a-f]{8}_responses", name)

    def test_names_that_normalize_alike_stay_distinct(self):
        clients = ["acme-api", "acme_api", "acme__api", "acme-api-", "Acme_api"]
        for compressed in (False, True):
            namespaces = {cache_namespace(c, compressed) for c in clients}
            assert len(namespaces) == len(clients)
        assert cache_namespace("acme_api") == "api_cache_acme_api_responses"

    def test_long_names_sharing_a_prefix_stay_distinct(self):
        a = cache_namespace("x" * 60 + "a", compressed=True)
        b = cache_namespace("x" * 60 + "b", compressed=True)
        assert a != b
        for name in (a, b):
            assert len(name) <= MAX_NAMESPACE_LENGTH
            assert name.startswith("api_cache_x")
            assert name.endswith("_responses_compressed")

    def test_name_that_fits_exactly_is_kept(self):
        client = "y" * (MAX_NAMESPACE_LENGTH - len("api_cache_") - len("_responses"))
        assert cache_namespace(client) == f"api_cache_{client}_responses"

    def test_only_separators(self):
        assert re.fullmatch(r"api_cache_[0-9a-f]{8}_responses", cache_namespace("--"))

    def test_invalid_client_rejected(self):
        with pytest.raises(ValidationError):
            cache_namespace("bad name")


class TestSummarizeParams:

    def test_truncates_long_strings(self):
        summary = summarize_params({"prompt": "a" * 250, "n": 1})
        assert "a" * 100 + "..." in summary
        assert "a" * 101 not in summary

    def test_empty(self):
        assert summarize_params(None) == "{}"
