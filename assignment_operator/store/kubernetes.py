"""Resource store backed by the Kubernetes API.

The operator custom resources are read and patched through the
`CustomObjectsApi`. Resources without a namespace are treated as cluster
scoped, and listing or watching without a namespace spans all namespaces.
"""

import asyncio
from collections.abc import AsyncGenerator
import logging
from typing import Any

import aiohttp
from kubernetes_asyncio import client, config, watch
from kubernetes_asyncio.client.rest import ApiException

from assignment_operator.exceptions import StoreError
from assignment_operator.manifest import API_GROUP, API_VERSION, PLURALS, NamedResource

from .store import ResourceStore

__all__ = [
    "KubernetesResourceStore",
]

_LOGGER = logging.getLogger(__name__)

MERGE_PATCH_CONTENT_TYPE = "application/merge-patch+json"
NOT_FOUND = 404
GONE = 410
WATCH_TIMEOUT_SECONDS = 300
WATCH_RETRY_DELAY = 5.0


def _plural(kind: str) -> str:
    if (plural := PLURALS.get(kind)) is None:
        raise StoreError(f"Unsupported resource kind '{kind}'")
    return plural


class KubernetesResourceStore(ResourceStore):
    """ResourceStore implementation using `kubernetes_asyncio`."""

    def __init__(self, api_client: client.ApiClient) -> None:
        """Initialize KubernetesResourceStore."""
        self._api_client = api_client
        self._api = client.CustomObjectsApi(api_client)

    @classmethod
    async def create(cls, kubeconfig: str | None = None) -> "KubernetesResourceStore":
        """Create a store using in-cluster credentials or a kubeconfig file."""
        if kubeconfig:
            await config.load_kube_config(config_file=kubeconfig)
        else:
            try:
                config.load_incluster_config()
            except config.ConfigException:
                _LOGGER.debug("Not running in a cluster, loading kubeconfig")
                await config.load_kube_config()
        return cls(client.ApiClient())

    async def close(self) -> None:
        """Close the underlying API client."""
        await self._api_client.close()

    async def get_object(self, resource_id: NamedResource) -> dict[str, Any] | None:
        plural = _plural(resource_id.kind)
        try:
            if resource_id.namespace:
                return await self._api.get_namespaced_custom_object(
                    API_GROUP,
                    API_VERSION,
                    resource_id.namespace,
                    plural,
                    resource_id.name,
                )
            return await self._api.get_cluster_custom_object(
                API_GROUP, API_VERSION, plural, resource_id.name
            )
        except ApiException as err:
            if err.status == NOT_FOUND:
                return None
            raise StoreError(f"Unable to get {resource_id}: {err.reason}") from err

    async def list_objects(
        self, kind: str, namespace: str | None = None
    ) -> list[dict[str, Any]]:
        plural = _plural(kind)
        try:
            if namespace:
                result = await self._api.list_namespaced_custom_object(
                    API_GROUP, API_VERSION, namespace, plural
                )
            else:
                result = await self._api.list_cluster_custom_object(
                    API_GROUP, API_VERSION, plural
                )
        except ApiException as err:
            raise StoreError(f"Unable to list {plural}: {err.reason}") from err
        items = result.get("items") or []
        for item in items:
            # List responses omit the type of each item
            item.setdefault("apiVersion", f"{API_GROUP}/{API_VERSION}")
            item.setdefault("kind", kind)
        return items

    async def patch_merge(
        self, resource_id: NamedResource, patch: dict[str, Any]
    ) -> dict[str, Any]:
        plural = _plural(resource_id.kind)
        try:
            if resource_id.namespace:
                return await self._api.patch_namespaced_custom_object(
                    API_GROUP,
                    API_VERSION,
                    resource_id.namespace,
                    plural,
                    resource_id.name,
                    patch,
                    _content_type=MERGE_PATCH_CONTENT_TYPE,
                )
            return await self._api.patch_cluster_custom_object(
                API_GROUP,
                API_VERSION,
                plural,
                resource_id.name,
                patch,
                _content_type=MERGE_PATCH_CONTENT_TYPE,
            )
        except ApiException as err:
            raise StoreError(f"Unable to patch {resource_id}: {err.reason}") from err

    async def watch(
        self, kind: str, namespace: str | None = None
    ) -> AsyncGenerator[NamedResource, None]:
        """Watch a kind, reconnecting when the stream ends or fails."""
        plural = _plural(kind)
        if namespace:
            func: Any = self._api.list_namespaced_custom_object
            args: tuple[str, ...] = (API_GROUP, API_VERSION, namespace, plural)
        else:
            func = self._api.list_cluster_custom_object
            args = (API_GROUP, API_VERSION, plural)

        resource_version: str | None = None
        while True:
            watcher = watch.Watch()
            kwargs: dict[str, Any] = {"timeout_seconds": WATCH_TIMEOUT_SECONDS}
            if resource_version:
                kwargs["resource_version"] = resource_version
            try:
                async with watcher.stream(func, *args, **kwargs) as stream:
                    async for event in stream:
                        obj = event.get("object") or {}
                        if event.get("type") == "ERROR":
                            _LOGGER.warning("Watch of %s returned error: %s", plural, obj)
                            resource_version = None
                            break
                        metadata = obj.get("metadata") or {}
                        resource_version = metadata.get("resourceVersion")
                        yield NamedResource(
                            kind, metadata.get("namespace"), metadata["name"]
                        )
            except ApiException as err:
                if err.status == GONE:
                    _LOGGER.info("Watch of %s expired, restarting", plural)
                    resource_version = None
                    continue
                reason = err.reason
            except (aiohttp.ClientError, asyncio.TimeoutError) as err:
                resource_version = None
                reason = str(err) or type(err).__name__
            else:
                continue
            _LOGGER.warning(
                "Watch of %s failed, retrying in %ss: %s",
                plural,
                WATCH_RETRY_DELAY,
                reason,
            )
            await asyncio.sleep(WATCH_RETRY_DELAY)
