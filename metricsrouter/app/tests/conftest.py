############################################################
#
# metricsrouter - Custom and External Metrics Router
#
# conftest.py: Pytest configuration and shared test fixtures
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Pytest configuration and shared fixtures for metricsrouter tests."""

from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional, Set
from unittest.mock import AsyncMock

import pytest

from metricsrouter.app.core.routing.models import (
    BackendDescriptor,
    BackendIdentity,
    CustomMetricKey,
    ExternalMetricKey,
    MetricKind,
    RegistrySnapshot,
)
from metricsrouter.app.core.routing.registry import BackendRegistry

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


class FakeBackend:
    """In-memory stand-in for a backend's discovery/query client."""

    def __init__(
        self,
        identity: BackendIdentity,
        custom: Iterable[CustomMetricKey] = (),
        external: Iterable[ExternalMetricKey] = (),
    ):
        self.identity = identity
        self.custom: Set[CustomMetricKey] = set(custom)
        self.external: Set[ExternalMetricKey] = set(external)
        self.fail_discovery: Optional[Exception] = None
        self.discovery_calls = 0
        self.closed = False
        self.get_metric_by_name = AsyncMock()
        self.get_metric_by_selector = AsyncMock()
        self.get_external_metric = AsyncMock()

    def __repr__(self) -> str:
        return f"FakeBackend({self.identity})"

    async def list_custom_metric_keys(self) -> Set[CustomMetricKey]:
        self.discovery_calls += 1
        if self.fail_discovery:
            raise self.fail_discovery
        return set(self.custom)

    async def list_external_metric_keys(self) -> Set[ExternalMetricKey]:
        if self.fail_discovery:
            raise self.fail_discovery
        return set(self.external)

    async def close(self) -> None:
        self.closed = True


def custom_key(metric: str, resource: str = "pods", group: str = "", namespaced: bool = True) -> CustomMetricKey:
    return CustomMetricKey(group=group, resource=resource, namespaced=namespaced, metric=metric)


def external_key(metric: str) -> ExternalMetricKey:
    return ExternalMetricKey(metric=metric)


@pytest.fixture
def registry() -> BackendRegistry:
    """Fresh registry with no client factory."""
    return BackendRegistry()


@pytest.fixture
def make_descriptor():
    """Build descriptors with sensible defaults."""

    def _make(
        name: str,
        namespace: str = "monitoring",
        priority: int = 1,
        created_offset: int = 0,
        custom: bool = True,
        external: bool = True,
        port: int = 443,
    ) -> BackendDescriptor:
        return BackendDescriptor(
            identity=BackendIdentity(namespace=namespace, name=name),
            port=port,
            priority=priority,
            created_at=T0 + timedelta(seconds=created_offset),
            custom_metrics=custom,
            external_metrics=external,
        )

    return _make


def _check_invariants(snapshot: RegistrySnapshot) -> None:
    for kind in MetricKind:
        index = snapshot.index_for(kind)

        # Every index entry has a properties record that claims the key
        for key, entries in index.items():
            assert entries, f"empty index left behind for {key}"
            identities = [e.identity for e in entries]
            assert len(identities) == len(set(identities)), f"duplicate entries for {key}"
            for entry in entries:
                props = snapshot.properties.get(entry.identity)
                assert props is not None, f"{entry.identity} indexed without properties"
                assert key in props.keys_for(kind)
            order = [(e.priority, e.created_at) for e in entries]
            assert order == sorted(order), f"index for {key} out of order"

        # Every claimed key has an index entry for that backend
        for identity, props in snapshot.properties.items():
            for key in props.keys_for(kind):
                assert key in index, f"{identity} claims {key} but no index exists"
                assert identity in [e.identity for e in index[key]]


@pytest.fixture
def check_invariants():
    """Assert the cross-map registry invariants on a snapshot."""
    return _check_invariants


@pytest.fixture
def fake_backend():
    """FakeBackend class, for building discovery clients in tests."""
    return FakeBackend


@pytest.fixture
def ckey():
    """Custom metric key builder."""
    return custom_key


@pytest.fixture
def ekey():
    """External metric key builder."""
    return external_key
