"""Tests for per-kind artifact URL construction."""

from __future__ import annotations

from urllib.parse import urlsplit

import pytest

from SourceFetch.errors import ConfigurationError, ResolverError
from SourceFetch.settings import SourceKind
from SourceFetch.urls import build_source_url
from tests.source_fetch.fakes import FakeResolver


def test_repository_url_is_computed_locally() -> None:
    resolver = FakeResolver()

    url = build_source_url("repository", "flux-system", "demo", "v1", 8080, resolver=resolver)

    assert url == "http://localhost:8080/gitrepository/flux-system/demo/v1.tar.gz"
    assert resolver.calls == []


def test_latest_revision_is_passed_through_verbatim() -> None:
    url = build_source_url(SourceKind.GIT_REPOSITORY, "apps", "podinfo", "latest", 18080)
    assert url == "http://localhost:18080/gitrepository/apps/podinfo/latest.tar.gz"


def test_chart_url_is_delegated_to_resolver() -> None:
    resolver = FakeResolver("http://localhost:9000/apps/podinfo/podinfo-6.0.0.tgz")

    url = build_source_url("helmchart", "apps", "podinfo", "latest", 9000, resolver=resolver)

    assert url == "http://localhost:9000/apps/podinfo/podinfo-6.0.0.tgz"
    assert resolver.calls == [("apps", "podinfo", 9000)]


def test_chart_without_resolver_is_rejected() -> None:
    with pytest.raises(ResolverError):
        build_source_url(SourceKind.HELM_CHART, "apps", "podinfo", "latest", 9000)


@pytest.mark.parametrize("kind", list(SourceKind))
def test_host_is_always_local_tunnel(kind: SourceKind) -> None:
    url = build_source_url(kind, "ns", "name", "rev", 4321, resolver=FakeResolver())
    assert urlsplit(url).netloc == "localhost:4321"


def test_unknown_kind_is_a_configuration_error() -> None:
    with pytest.raises(ConfigurationError, match="not allowed"):
        build_source_url("ocirepository", "ns", "name", "rev", 8080)
