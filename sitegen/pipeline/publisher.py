"""PUBLISH stage: make the assembled website live.

Writes ``index.html``, ``config.json`` and, when there is custom CSS,
``styles.css`` under ``merchants/<tenant>/<store>/website/`` in the object
store, then marks the store record as published in the metadata registry.
Store and registry calls get their own bounded retries. Anything that still
fails is raised as :class:`PublishError`; there is no offline substitute for
making content live.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Callable

from sitegen.config import DEFAULT_WEBSITES_BUCKET, PUBLISHED_STATUS, WEBSITE_KEY_PREFIX
from sitegen.exceptions import AppError, PublishError
from sitegen.models import SiteSpec
from sitegen.resilience.retry import RetryConfig, RetryPolicy, SleepFn
from sitegen.storage import MetadataRegistry, ObjectStore

logger = logging.getLogger(__name__)


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class WebsitePublisher:
    """Upload the site and update the registry.

    Parameters
    ----------
    store : ObjectStore
        Durable object store.
    registry : MetadataRegistry
        Record store keyed by ``{tenant_id, store_id}``.
    bucket : str, optional
        Bucket for website files.
    cloudfront_domain : str | None, optional
        When set, the public URL is served from this CDN domain.
    store_retry, registry_retry : RetryConfig, optional
        Retry policies; default to the ``s3`` and ``registry`` presets.
    now : callable, optional
        Returns the ISO-8601 timestamp written to the registry.
    """

    def __init__(
        self,
        store: ObjectStore,
        registry: MetadataRegistry,
        *,
        bucket: str = DEFAULT_WEBSITES_BUCKET,
        cloudfront_domain: str | None = None,
        store_retry: RetryConfig | None = None,
        registry_retry: RetryConfig | None = None,
        now: Callable[[], str] = _utc_now,
        sleep: SleepFn | None = None,
    ) -> None:
        self.store = store
        self.registry = registry
        self.bucket = bucket
        self.cloudfront_domain = cloudfront_domain
        retry_kwargs = {"sleep": sleep} if sleep is not None else {}
        self.store_policy = RetryPolicy(store_retry or RetryConfig.preset("s3"), **retry_kwargs)
        self.registry_policy = RetryPolicy(
            registry_retry or RetryConfig.preset("registry"), **retry_kwargs
        )
        self.now = now

    async def _put(self, key: str, body: str, content_type: str) -> str:
        data = body.encode("utf-8")
        return await self.store_policy.call(
            lambda: self.store.put(self.bucket, key, data, content_type)
        )

    async def publish(
        self, html: str, css: str, spec: SiteSpec, tenant_id: str, store_id: str
    ) -> str:
        """Publish the site and return its public URL.

        Raises
        ------
        PublishError
            If any store write or the registry update fails.
        """
        base = WEBSITE_KEY_PREFIX.format(tenant_id=tenant_id, store_id=store_id)
        logger.info("Publishing website for store %s (tenant %s)", store_id, tenant_id)
        try:
            stored_url = await self._put(
                f"{base}/index.html", html, "text/html; charset=utf-8"
            )
            await self._put(
                f"{base}/config.json",
                json.dumps(spec.to_dict(), ensure_ascii=False),
                "application/json",
            )
            if css.strip():
                await self._put(f"{base}/styles.css", css, "text/css")
            public_url = (
                f"https://{self.cloudfront_domain}/{base}/index.html"
                if self.cloudfront_domain
                else stored_url
            )
            timestamp = self.now()
            fields = {
                "live_url": public_url,
                "status": PUBLISHED_STATUS,
                "published_at": timestamp,
                "updated_at": timestamp,
            }
            await self.registry_policy.call(
                lambda: self.registry.update(
                    {"tenant_id": tenant_id, "store_id": store_id}, fields
                )
            )
        except PublishError:
            raise
        except AppError as exc:
            raise PublishError(
                f"Publishing failed: {exc.message}",
                context={"tenant_id": tenant_id, "store_id": store_id, "cause": exc.code},
                transient=exc.transient,
            ) from exc
        except Exception as exc:
            raise PublishError(
                f"Publishing failed: {exc}",
                context={
                    "tenant_id": tenant_id,
                    "store_id": store_id,
                    "cause": type(exc).__name__,
                },
            ) from exc
        logger.info("Website published: %s", public_url)
        return public_url
