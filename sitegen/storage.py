"""Durable object store and metadata registry used by IMAGES and PUBLISH.

The pipeline only needs two narrow contracts: put/get bytes under a
``bucket``/``key`` and get back a stable public URL, and update a record in
a key-value registry. This module defines both as protocols and ships
filesystem implementations so the whole pipeline runs locally.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Mapping, Protocol

logger = logging.getLogger(__name__)


class ObjectStore(Protocol):
    async def put(self, bucket: str, key: str, data: bytes, content_type: str) -> str: ...

    async def get(self, bucket: str, key: str) -> bytes: ...

    def url_for(self, bucket: str, key: str) -> str: ...


class MetadataRegistry(Protocol):
    async def update(self, key: Mapping[str, str], fields: Mapping[str, Any]) -> None: ...


def _safe_parts(bucket: str, key: str) -> tuple[str, ...]:
    parts = (bucket, *key.split("/"))
    if any(p in ("", ".", "..") for p in parts):
        raise ValueError(f"Invalid object location {bucket}/{key}")
    return parts


class LocalObjectStore:
    """Store objects as files under ``root/<bucket>/<key>``.

    Parameters
    ----------
    root : Path
        Directory holding one sub-directory per bucket.
    base_url : str | None, optional
        Public base URL; objects are reported as ``<base_url>/<bucket>/<key>``.
        Without one, ``file://`` URLs are returned.

    Examples
    --------
    >>> store = LocalObjectStore(Path("/tmp/sitegen"), "https://cdn.example")
    >>> store.url_for("sites", "a/index.html")
    'https://cdn.example/sites/a/index.html'
    """

    def __init__(self, root: Path, base_url: str | None = None) -> None:
        self.root = Path(root)
        self.base_url = base_url.rstrip("/") if base_url else None

    def _path(self, bucket: str, key: str) -> Path:
        return self.root.joinpath(*_safe_parts(bucket, key))

    def url_for(self, bucket: str, key: str) -> str:
        if self.base_url:
            return f"{self.base_url}/{bucket}/{key}"
        return self._path(bucket, key).resolve().as_uri()

    async def put(self, bucket: str, key: str, data: bytes, content_type: str) -> str:
        path = self._path(bucket, key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        logger.debug("Stored %s (%s, %d bytes)", path, content_type, len(data))
        return self.url_for(bucket, key)

    async def get(self, bucket: str, key: str) -> bytes:
        return self._path(bucket, key).read_bytes()


class JsonFileRegistry:
    """Key-value registry persisted as one JSON document.

    Records are keyed by the sorted ``name=value`` pairs of the key mapping,
    and ``update`` merges ``fields`` into the existing record.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    @staticmethod
    def record_id(key: Mapping[str, str]) -> str:
        return ",".join(f"{k}={key[k]}" for k in sorted(key))

    def load(self) -> dict[str, dict[str, Any]]:
        if not self.path.exists():
            return {}
        with self.path.open("r", encoding="utf-8") as fh:
            return json.load(fh)

    async def update(self, key: Mapping[str, str], fields: Mapping[str, Any]) -> None:
        records = self.load()
        record = records.setdefault(self.record_id(key), dict(key))
        record.update(fields)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("w", encoding="utf-8") as fh:
            json.dump(records, fh, ensure_ascii=False, indent=2)
