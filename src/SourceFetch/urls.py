"""Artifact URL construction for each supported source kind."""

from __future__ import annotations

from typing import Optional, Protocol

from .errors import ResolverError
from .settings import SourceKind

__all__ = ["UrlResolver", "git_repository_url", "build_source_url"]


class UrlResolver(Protocol):
    """Anything able to look up a published artifact URL for a source."""

    def resolve(self, namespace: str, name: str, local_port: int) -> str:
        """Return a ``localhost`` URL for the artifact of ``namespace/name``."""


def git_repository_url(namespace: str, name: str, revision: str, local_port: int) -> str:
    """Return the tunnelled URL of a repository snapshot.

    Examples:
        >>> git_repository_url("flux-system", "demo", "v1", 8080)
        'http://localhost:8080/gitrepository/flux-system/demo/v1.tar.gz'
    """
    return (
        f"http://localhost:{local_port}/{SourceKind.GIT_REPOSITORY.value}/"
        f"{namespace}/{name}/{revision}.tar.gz"
    )


def build_source_url(
    kind: SourceKind | str,
    namespace: str,
    name: str,
    revision: str,
    local_port: int,
    *,
    resolver: Optional[UrlResolver] = None,
) -> str:
    """Return the artifact URL for a source, addressed at ``localhost:local_port``.

    Repository snapshots are computed locally.  Chart locations are only
    known to the source controller after it packages the chart, so they are
    looked up through ``resolver``; ``revision`` does not apply to them.

    Raises:
        ResolverError: If a chart is requested without a resolver, or the
            resolver fails.
    """
    kind = SourceKind.parse(kind)
    if kind is SourceKind.GIT_REPOSITORY:
        return git_repository_url(namespace, name, revision, local_port)
    if resolver is None:
        raise ResolverError(f"no resolver configured for {kind.value} {namespace}/{name}")
    return resolver.resolve(namespace, name, local_port)
