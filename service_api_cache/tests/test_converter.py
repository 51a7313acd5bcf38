"""
Unit tests for moving records between plain and compressed namespaces.
"""

import zlib
from dataclasses import replace

import pytest

from shared.config import ClientRegistry
from shared.errors import ConfigurationMissingError, ValidationError
from service_api_cache.app.caching.cache_manager import CacheManager
from service_api_cache.app.caching.converter import ConversionStats, NamespaceConverter, ValidationStats
from service_api_cache.app.caching.keys import cache_namespace
from service_api_cache.app.caching.models import CacheRecord

PLAIN = cache_namespace("demo")
COMPRESSED = cache_namespace("demo", compressed=True)


def with_compression(manager: CacheManager, client: str, enabled: bool) -> CacheManager:
    """Same storage, with ``client``'s compression setting flipped."""
    configs = [
        manager.registry.get(name).model_copy(update={"compression_enabled": enabled})
        if name == client else manager.registry.get(name)
        for name in manager.registry.names()
    ]
    return CacheManager(ClientRegistry(configs), manager.cache_store, manager.rate_limiter, clock=manager.clock)


async def seed(manager: CacheManager, response, count: int, **kwargs) -> list:
    keys = [f"{i:064x}" for i in range(count)]
    for i, key in enumerate(keys):
        await manager.store_response("demo", key, replace(response, body=f'{{"n": {i}}}'.encode()), **kwargs)
    return keys


class TestConvertToCompressed:
    """Plain namespace into compressed namespace."""

    @pytest.mark.asyncio
    async def test_records_survive_enabling_compression(self, cache_manager, cache_store, api_response):
        keys = await seed(cache_manager, api_response, 5)

        stats = await cache_manager.convert_namespace("demo", compress=True, batch_size=2)

        assert stats == ConversionStats(total_count=5, processed_count=5)
        raw = await cache_store.get(COMPRESSED, keys[3])
        assert zlib.decompress(raw.response_body) == b'{"n": 3}'
        assert raw.response_size == len(raw.response_body)

        compressed_manager = with_compression(cache_manager, "demo", True)
        cached = await compressed_manager.get_cached_response("demo", keys[3])
        assert cached.body == b'{"n": 3}'
        assert cached.headers == api_response.headers
        assert cached.request_headers == api_response.request_headers

    @pytest.mark.asyncio
    async def test_source_is_left_in_place(self, cache_manager, cache_store, api_response):
        await seed(cache_manager, api_response, 2)

        await cache_manager.convert_namespace("demo")

        assert await cache_store.count_total(PLAIN) == 2
        assert await cache_store.count_total(COMPRESSED) == 2

    @pytest.mark.asyncio
    async def test_timestamps_and_metadata_are_kept(self, cache_manager, cache_store, api_response):
        response = replace(api_response, credits=3, attributes="nightly")
        await cache_manager.store_response("demo", "k" * 64, response, ttl=600)
        source = await cache_store.get(PLAIN, "k" * 64)

        await cache_manager.convert_namespace("demo")

        converted = await cache_store.get(COMPRESSED, "k" * 64)
        assert converted.expires_at == source.expires_at
        assert converted.created_at == source.created_at
        assert converted.credits == 3
        assert converted.attributes == "nightly"

    @pytest.mark.asyncio
    async def test_expired_records_are_skipped(self, cache_manager, cache_store, api_response, clock):
        await seed(cache_manager, api_response, 2, ttl=10)
        await cache_manager.store_response("demo", "f" * 64, api_response)
        clock.advance(10)

        stats = await cache_manager.convert_namespace("demo")

        assert stats.total_count == 3
        assert stats.skipped_count == 2
        assert stats.processed_count == 1
        assert await cache_store.count_total(COMPRESSED) == 1

    @pytest.mark.asyncio
    async def test_existing_target_records_need_overwrite(self, cache_manager, cache_store, api_response):
        keys = await seed(cache_manager, api_response, 1)
        await cache_manager.convert_namespace("demo")
        await cache_manager.store_response("demo", keys[0], replace(api_response, body=b'{"n": "new"}'))

        skipped = await cache_manager.convert_namespace("demo")
        assert skipped.skipped_count == 1
        assert zlib.decompress((await cache_store.get(COMPRESSED, keys[0])).response_body) == b'{"n": 0}'

        replaced = await cache_manager.convert_namespace("demo", overwrite=True)
        assert replaced.processed_count == 1
        assert zlib.decompress((await cache_store.get(COMPRESSED, keys[0])).response_body) == b'{"n": "new"}'

    @pytest.mark.asyncio
    async def test_empty_namespace(self, cache_manager):
        assert await cache_manager.convert_namespace("demo") == ConversionStats()


class TestConvertToPlain:
    """Compressed namespace back into the plain namespace."""

    @pytest.mark.asyncio
    async def test_records_survive_disabling_compression(self, cache_manager, cache_store, api_response):
        key = "d" * 64
        await cache_manager.store_response("demo-compressed", key, api_response)

        stats = await cache_manager.convert_namespace("demo-compressed", compress=False)

        assert stats.processed_count == 1
        raw = await cache_store.get(cache_namespace("demo-compressed"), key)
        assert raw.response_body == api_response.body

        plain_manager = with_compression(cache_manager, "demo-compressed", False)
        cached = await plain_manager.get_cached_response("demo-compressed", key)
        assert cached.body == api_response.body
        assert cached.headers == api_response.headers

    @pytest.mark.asyncio
    async def test_corrupted_source_is_counted_and_not_written(self, cache_manager, cache_store):
        namespace = cache_namespace("demo-compressed", compressed=True)
        await cache_store.store(namespace, CacheRecord(
            key="e" * 64,
            client="demo-compressed",
            endpoint="predictions",
            base_url="http://demo.test/v1",
            full_url="http://demo.test/v1/predictions",
            method="GET",
            status_code=200,
            response_body=b"not zlib at all",
        ))

        stats = await cache_manager.convert_namespace("demo-compressed", compress=False)

        assert stats.error_count == 1
        assert stats.processed_count == 0
        assert await cache_store.count_total(cache_namespace("demo-compressed")) == 0


class TestValidation:
    """Checking converted records against their sources."""

    @pytest.mark.asyncio
    async def test_converted_records_validate(self, cache_manager, api_response):
        await seed(cache_manager, api_response, 3)
        await cache_manager.convert_namespace("demo", batch_size=2)

        stats = await cache_manager.validate_namespace("demo", batch_size=2)

        assert stats == ValidationStats(validated_count=3)

    @pytest.mark.asyncio
    async def test_tampered_and_orphaned_records_are_reported(self, cache_manager, cache_store, api_response):
        keys = await seed(cache_manager, api_response, 2)
        await cache_manager.convert_namespace("demo")

        tampered = await cache_store.get(COMPRESSED, keys[0])
        await cache_store.put(COMPRESSED, replace(tampered, response_body=zlib.compress(b'{"n": 99}')))
        await cache_store.put(COMPRESSED, replace(tampered, key="9" * 64))

        stats = await cache_manager.validate_namespace("demo")

        assert stats == ValidationStats(validated_count=1, mismatch_count=1, missing_count=1)

    @pytest.mark.asyncio
    async def test_validate_record_compares_metadata(self, cache_manager, cache_store, api_response):
        await seed(cache_manager, api_response, 1)
        converter = cache_manager.converter("demo")
        source = (await cache_store.list_records(PLAIN))[0]
        converted = converter.convert_record(source)

        assert converter.validate_record(source, converted) is True
        assert converter.validate_record(source, replace(converted, status_code=500)) is False


class TestConverterSetup:

    def test_namespaces_follow_direction(self, cache_manager):
        to_compressed = NamespaceConverter(cache_manager, "demo")
        to_plain = NamespaceConverter(cache_manager, "demo", compress=False)

        assert (to_compressed.source_namespace, to_compressed.target_namespace) == (PLAIN, COMPRESSED)
        assert (to_plain.source_namespace, to_plain.target_namespace) == (COMPRESSED, PLAIN)

    def test_invalid_batch_size(self, cache_manager):
        with pytest.raises(ValidationError):
            NamespaceConverter(cache_manager, "demo", batch_size=0)

    def test_unknown_client(self, cache_manager):
        with pytest.raises(ConfigurationMissingError):
            NamespaceConverter(cache_manager, "nobody")
