############################################################
#
# metricsrouter - Custom and External Metrics Router
#
# test_provider.py: Unit tests for the routed metrics provider
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Unit tests for RoutedMetricsProvider."""

from unittest.mock import MagicMock

import pytest

from metricsrouter.app.core.provider import RoutedMetricsProvider
from metricsrouter.app.core.routing.errors import BackendPropertiesMissing, NoRouteForMetric
from metricsrouter.app.core.routing.models import BackendIdentity, MetricKind


class TestBackendFor:
    """Resolve with retry on the properties race."""

    def test_retries_properties_missing(self, fake_backend, ckey):
        backend = fake_backend(BackendIdentity("monitoring", "b"))
        registry = MagicMock()
        registry.resolve.side_effect = [
            BackendPropertiesMissing(BackendIdentity("monitoring", "a")),
            backend,
        ]
        provider = RoutedMetricsProvider(registry, resolve_attempts=3)

        assert provider.backend_for(ckey("m"), MetricKind.CUSTOM) is backend
        assert registry.resolve.call_count == 2

    def test_gives_up_after_attempts(self, ckey):
        registry = MagicMock()
        registry.resolve.side_effect = BackendPropertiesMissing(BackendIdentity("monitoring", "a"))
        provider = RoutedMetricsProvider(registry, resolve_attempts=2)

        with pytest.raises(BackendPropertiesMissing):
            provider.backend_for(ckey("m"), MetricKind.CUSTOM)
        assert registry.resolve.call_count == 2

    def test_no_route_is_not_retried(self, ckey):
        registry = MagicMock()
        registry.resolve.side_effect = NoRouteForMetric("m")
        provider = RoutedMetricsProvider(registry, resolve_attempts=5)

        with pytest.raises(NoRouteForMetric):
            provider.backend_for(ckey("m"), MetricKind.CUSTOM)
        assert registry.resolve.call_count == 1


class TestDelegation:
    """Queries go to the winning backend only."""

    @pytest.fixture
    def setup(self, registry, make_descriptor, fake_backend, ckey, ekey):
        primary = make_descriptor("primary", priority=1)
        fallback = make_descriptor("fallback", priority=2)
        primary_client = fake_backend(primary.identity)
        fallback_client = fake_backend(fallback.identity)
        registry.upsert(primary, [ckey("rps")], [ekey("queue")], client=primary_client)
        registry.upsert(fallback, [ckey("rps"), ckey("latency")], [ekey("queue")], client=fallback_client)
        return RoutedMetricsProvider(registry, resolve_attempts=1), primary_client, fallback_client

    @pytest.mark.asyncio
    async def test_get_metric_by_name(self, setup, ckey):
        provider, primary, fallback = setup
        primary.get_metric_by_name.return_value = "value"

        result = await provider.get_metric_by_name("default", "pod-1", ckey("rps"), "verb=GET")

        assert result == "value"
        primary.get_metric_by_name.assert_awaited_once_with("default", "pod-1", ckey("rps"), "verb=GET")
        fallback.get_metric_by_name.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_get_metric_by_selector_uses_only_claimant(self, setup, ckey):
        provider, primary, fallback = setup
        await provider.get_metric_by_selector("default", "app=web", ckey("latency"))

        fallback.get_metric_by_selector.assert_awaited_once_with("default", "app=web", ckey("latency"), None)
        primary.get_metric_by_selector.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_get_external_metric(self, setup, ekey):
        provider, primary, fallback = setup
        await provider.get_external_metric("default", ekey("queue"), "queue=jobs")

        primary.get_external_metric.assert_awaited_once_with("default", ekey("queue"), "queue=jobs")

    @pytest.mark.asyncio
    async def test_unrouted_metric_raises(self, setup, ekey):
        provider, _, _ = setup
        with pytest.raises(NoRouteForMetric):
            await provider.get_external_metric("default", ekey("unknown"))

    def test_list_all_metrics_is_sorted_union(self, setup, ckey, ekey):
        provider, _, _ = setup
        assert provider.list_all_metrics() == [ckey("latency"), ckey("rps")]
        assert provider.list_all_external_metrics() == [ekey("queue")]


class TestCustomKey:
    """Building keys from request paths."""

    def test_grouped_resource(self, ckey):
        key = RoutedMetricsProvider.custom_key("deployments.apps", "queue_depth", namespaced=True)
        assert key == ckey("queue_depth", resource="deployments", group="apps")

    def test_core_resource(self, ckey):
        key = RoutedMetricsProvider.custom_key("nodes", "cpu_temp", namespaced=False)
        assert key == ckey("cpu_temp", resource="nodes", namespaced=False)

    @pytest.mark.asyncio
    async def test_scope_mismatch_has_no_route(self, registry, make_descriptor, fake_backend, ckey):
        descriptor = make_descriptor("adapter")
        registry.upsert(descriptor, [ckey("cpu_temp", resource="nodes", namespaced=False)],
                        client=fake_backend(descriptor.identity))
        provider = RoutedMetricsProvider(registry, resolve_attempts=1)

        key = provider.custom_key("nodes", "cpu_temp", namespaced=True)
        with pytest.raises(NoRouteForMetric):
            await provider.get_metric_by_name("default", "node-1", key)

    @pytest.mark.asyncio
    async def test_query_does_not_scan_catalog(self, fake_backend, ckey):
        backend = fake_backend(BackendIdentity("monitoring", "adapter"))
        registry = MagicMock()
        registry.resolve.return_value = backend
        provider = RoutedMetricsProvider(registry, resolve_attempts=1)

        key = provider.custom_key("pods", "rps", namespaced=True)
        await provider.get_metric_by_name("default", "pod-1", key)

        registry.list_metric_keys.assert_not_called()
        registry.resolve.assert_called_once_with(ckey("rps"), MetricKind.CUSTOM)
