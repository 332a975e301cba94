"""Tests for publishing the site to the object store and registry."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from sitegen.backends.templates import build_template_spec
from sitegen.exceptions import PublishError, TransientBackendError
from sitegen.models import GenerationRequest
from sitegen.pipeline.publisher import WebsitePublisher
from sitegen.storage import JsonFileRegistry, LocalObjectStore

SPEC = build_template_spec(GenerationRequest("Green Basket", "grocery"))
NOW = "2024-05-01T12:00:00+00:00"
HTML = "<!DOCTYPE html><html><body>hi</body></html>"


class FlakyStore:
    """Wraps a store and fails the first ``failures`` puts."""

    def __init__(self, inner: LocalObjectStore, failures: int, error_factory) -> None:
        self.inner = inner
        self.failures = failures
        self.error_factory = error_factory
        self.puts = 0

    async def put(self, bucket, key, data, content_type):
        self.puts += 1
        if self.puts <= self.failures:
            raise self.error_factory()
        return await self.inner.put(bucket, key, data, content_type)

    async def get(self, bucket, key):
        return await self.inner.get(bucket, key)

    def url_for(self, bucket, key):
        return self.inner.url_for(bucket, key)


class BrokenRegistry:
    async def update(self, key, fields):
        raise RuntimeError("registry offline")


def make_publisher(tmp_path: Path, recording_sleep, store=None, registry=None, **kwargs):
    store = store or LocalObjectStore(tmp_path / "storage", "https://cdn.test")
    registry = registry or JsonFileRegistry(tmp_path / "registry.json")
    publisher = WebsitePublisher(
        store, registry, bucket="sites", now=lambda: NOW, sleep=recording_sleep, **kwargs
    )
    return publisher, store, registry


@pytest.mark.asyncio
async def test_publish_writes_files_and_registry(tmp_path: Path, recording_sleep):
    publisher, _, registry = make_publisher(tmp_path, recording_sleep)

    url = await publisher.publish(HTML, "", SPEC, "t1", "s1")

    assert url == "https://cdn.test/sites/merchants/t1/s1/website/index.html"
    site = tmp_path / "storage" / "sites" / "merchants" / "t1" / "s1" / "website"
    assert (site / "index.html").read_text(encoding="utf-8") == HTML
    assert json.loads((site / "config.json").read_text(encoding="utf-8")) == SPEC.to_dict()
    assert not (site / "styles.css").exists()

    record = registry.load()["store_id=s1,tenant_id=t1"]
    assert record == {
        "tenant_id": "t1",
        "store_id": "s1",
        "live_url": url,
        "status": "PUBLISHED",
        "published_at": NOW,
        "updated_at": NOW,
    }


@pytest.mark.asyncio
async def test_custom_css_is_published(tmp_path: Path, recording_sleep):
    publisher, _, _ = make_publisher(tmp_path, recording_sleep)
    await publisher.publish(HTML, "body { color: red; }", SPEC, "t1", "s1")
    css = tmp_path / "storage" / "sites" / "merchants" / "t1" / "s1" / "website" / "styles.css"
    assert css.read_text(encoding="utf-8") == "body { color: red; }"


@pytest.mark.asyncio
async def test_cdn_domain_overrides_stored_url(tmp_path: Path, recording_sleep):
    publisher, _, registry = make_publisher(
        tmp_path, recording_sleep, cloudfront_domain="d123.cloudfront.net"
    )
    url = await publisher.publish(HTML, "", SPEC, "t1", "s1")
    assert url == "https://d123.cloudfront.net/merchants/t1/s1/website/index.html"
    assert registry.load()["store_id=s1,tenant_id=t1"]["live_url"] == url


@pytest.mark.asyncio
async def test_transient_store_error_is_retried(tmp_path: Path, recording_sleep):
    inner = LocalObjectStore(tmp_path / "storage")
    store = FlakyStore(inner, 1, lambda: TransientBackendError("slow", code="SlowDown"))
    publisher, _, _ = make_publisher(tmp_path, recording_sleep, store=store)

    url = await publisher.publish(HTML, "", SPEC, "t1", "s1")

    assert url.startswith("file://")
    assert len(recording_sleep.delays) == 1
    assert store.puts == 3


@pytest.mark.asyncio
async def test_persistent_store_failure_raises_publish_error(tmp_path: Path, recording_sleep):
    inner = LocalObjectStore(tmp_path / "storage")
    store = FlakyStore(inner, 99, lambda: TransientBackendError("slow", code="SlowDown"))
    publisher, _, _ = make_publisher(tmp_path, recording_sleep, store=store)

    with pytest.raises(PublishError) as excinfo:
        await publisher.publish(HTML, "", SPEC, "t1", "s1")

    assert store.puts == 3
    assert isinstance(excinfo.value.__cause__, TransientBackendError)
    assert excinfo.value.context["cause"] == "SlowDown"
    assert excinfo.value.transient


@pytest.mark.asyncio
async def test_registry_failure_raises_publish_error(tmp_path: Path, recording_sleep):
    publisher, _, _ = make_publisher(tmp_path, recording_sleep, registry=BrokenRegistry())
    with pytest.raises(PublishError) as excinfo:
        await publisher.publish(HTML, "", SPEC, "t1", "s1")
    assert isinstance(excinfo.value.__cause__, RuntimeError)
    assert excinfo.value.context["store_id"] == "s1"


@pytest.mark.asyncio
async def test_store_os_error_raises_publish_error(tmp_path: Path, recording_sleep):
    store = FlakyStore(LocalObjectStore(tmp_path / "storage"), 99, lambda: OSError("disk full"))
    publisher, _, registry = make_publisher(tmp_path, recording_sleep, store=store)

    with pytest.raises(PublishError) as excinfo:
        await publisher.publish(HTML, "", SPEC, "t1", "s1")

    assert store.puts == 1
    assert isinstance(excinfo.value.__cause__, OSError)
    assert registry.load() == {}


@pytest.mark.asyncio
async def test_published_url_is_a_string_and_files_exist(tmp_path: Path, recording_sleep):
    publisher, _, _ = make_publisher(tmp_path, recording_sleep)
    url = await publisher.publish(HTML, "", SPEC, "t1", "s1")
    assert isinstance(url, str)
    assert (tmp_path / "storage" / "sites" / "merchants" / "t1" / "s1" / "website" / "index.html").exists()
