# === NAVMAP v1 ===
# {
#   "module": "SourceFetch.resolvers",
#   "purpose": "Resolve chart artifact URLs from HelmChart custom resource status",
#   "sections": [
#     {"id": "rewrite", "name": "rewrite_to_local", "anchor": "RWR", "kind": "function"},
#     {"id": "nested", "name": "nested_string", "anchor": "NST", "kind": "function"},
#     {"id": "helmchart", "name": "HelmChartResolver", "anchor": "HCR", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Resolve chart artifact URLs from ``HelmChart`` custom resources.

The source controller publishes the location of a packaged chart in the
``status.url`` field of the ``HelmChart`` object once it has built it.  That
URL points at the in-cluster service address, which is unreachable from the
operator's machine, so the host part is replaced by the local tunnel.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError as Urllib3HTTPError

from .errors import ResolverError
from .settings import ClusterSettings

__all__ = ["rewrite_to_local", "nested_string", "HelmChartResolver"]

_LOGGER = logging.getLogger("SourceFetch")


def rewrite_to_local(url: str, local_port: int) -> str:
    """Point a published in-cluster artifact URL at the local tunnel.

    The URL is split on ``/`` into at most five parts (scheme, empty,
    authority, first path segment, remaining tail); the tail is kept and
    addressed at ``localhost:local_port``.

    Examples:
        >>> rewrite_to_local("http://svc.ns.svc.cluster.local:1234/a/b/c/d.tar.gz", 9999)
        'http://localhost:9999/b/c/d.tar.gz'

    Raises:
        ResolverError: If the published URL has too few path segments.
    """
    parts = url.split("/", 4)
    if len(parts) < 5 or not parts[-1]:
        raise ResolverError(f"published artifact URL {url!r} has too few path segments")
    return f"http://localhost:{local_port}/{parts[-1]}"


def nested_string(obj: Mapping[str, Any], *fields: str) -> Optional[str]:
    """Return the string at ``obj[fields[0]][fields[1]]...``, or None when absent.

    Raises:
        ResolverError: If an intermediate value is not a mapping or the leaf
            is not a string.
    """
    current: Any = obj
    path = ".".join(fields)
    for index, field in enumerate(fields):
        if not isinstance(current, Mapping):
            walked = ".".join(fields[:index])
            raise ResolverError(f".{walked} accessor error: {current!r} is not a mapping")
        if field not in current:
            return None
        current = current[field]
    if not isinstance(current, str):
        raise ResolverError(
            f".{path} accessor error: {current!r} is of type "
            f"{type(current).__name__}, expected str"
        )
    return current


class HelmChartResolver:
    """Look up ``status.url`` of a ``HelmChart`` through the Kubernetes API.

    Credentials come from the ambient kubeconfig (``KUBECONFIG`` or
    ``~/.kube/config``), falling back to in-cluster service account config.
    """

    def __init__(
        self,
        settings: Optional[ClusterSettings] = None,
        *,
        api: Optional[client.CustomObjectsApi] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.settings = settings or ClusterSettings()
        self.logger = logger or _LOGGER
        self._api = api

    def _custom_objects_api(self) -> client.CustomObjectsApi:
        if self._api is not None:
            return self._api
        kubeconfig = str(self.settings.kubeconfig) if self.settings.kubeconfig else None
        try:
            config.load_kube_config(config_file=kubeconfig, context=self.settings.context)
        except (config.ConfigException, OSError) as kube_exc:
            try:
                config.load_incluster_config()
            except config.ConfigException as exc:
                raise ResolverError(
                    f"unable to load Kubernetes configuration: {kube_exc}; {exc}"
                ) from exc
        self._api = client.CustomObjectsApi()
        return self._api

    def get_object(self, namespace: str, name: str) -> Mapping[str, Any]:
        """Fetch the raw ``HelmChart`` object.

        Raises:
            ResolverError: If the object is missing or the API call fails.
        """
        api = self._custom_objects_api()
        try:
            return api.get_namespaced_custom_object(
                group=self.settings.group,
                version=self.settings.version,
                namespace=namespace,
                plural=self.settings.plural,
                name=name,
            )
        except ApiException as exc:
            if exc.status == 404:
                raise ResolverError(
                    f"{self.settings.plural}.{self.settings.group} {namespace}/{name} not found"
                ) from exc
            raise ResolverError(
                f"failed to get {self.settings.plural}.{self.settings.group} "
                f"{namespace}/{name}: {exc.status} {exc.reason}"
            ) from exc
        except Urllib3HTTPError as exc:
            raise ResolverError(f"failed to reach the Kubernetes API: {exc}") from exc

    def resolve(self, namespace: str, name: str, local_port: int) -> str:
        """Return the chart artifact URL rewritten to ``localhost:local_port``.

        Raises:
            ResolverError: If the object, its ``status.url`` or the URL path is unusable.
        """
        self.logger.info("Getting URL from the HelmChart...", extra={"stage": "resolve"})
        obj = self.get_object(namespace, name)
        url = nested_string(obj, "status", "url")
        if url is None:
            raise ResolverError(".status.url not set")
        local_url = rewrite_to_local(url, local_port)
        self.logger.debug("rewrote %s to %s", url, local_url, extra={"stage": "resolve"})
        return local_url
