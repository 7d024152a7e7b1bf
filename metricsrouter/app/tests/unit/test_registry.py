############################################################
#
# metricsrouter - Custom and External Metrics Router
#
# test_registry.py: Unit tests for the backend routing registry
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Unit tests for BackendRegistry."""

import random
import threading
from datetime import datetime
from unittest.mock import MagicMock

import pytest

from metricsrouter.app.core.discovery.gateway import build_client
from metricsrouter.app.core.routing.errors import (
    BackendPropertiesMissing,
    BackendUnreachable,
    NoCandidate,
    NoRouteForMetric,
)
from metricsrouter.app.core.routing.models import BackendDescriptor, BackendIdentity, MetricKind
from metricsrouter.app.core.routing.priority_index import PriorityIndex
from metricsrouter.app.core.routing.registry import BackendRegistry


class TestUpsertAndResolve:
    """Basic routing decisions."""

    def test_resolve_returns_registered_client(self, registry, make_descriptor, ckey):
        client = object()
        registry.upsert(make_descriptor("svc"), [ckey("requests")], [], client=client)
        assert registry.resolve(ckey("requests"), MetricKind.CUSTOM) is client

    def test_kind_inferred_from_key(self, registry, make_descriptor, ckey, ekey):
        custom_client, external_client = object(), object()
        registry.upsert(make_descriptor("a"), [ckey("m")], [], client=custom_client)
        registry.upsert(make_descriptor("b"), [], [ekey("m")], client=external_client)
        assert registry.resolve(ckey("m")) is custom_client
        assert registry.resolve(ekey("m")) is external_client

    def test_lower_priority_wins(self, registry, make_descriptor, ckey):
        low, high = object(), object()
        registry.upsert(make_descriptor("two", priority=2, created_offset=0), [ckey("m")], client=high)
        registry.upsert(make_descriptor("one", priority=1, created_offset=50), [ckey("m")], client=low)
        assert registry.resolve(ckey("m"), MetricKind.CUSTOM) is low

    def test_equal_priority_earlier_created_wins(self, registry, make_descriptor, ekey):
        old, new = object(), object()
        registry.upsert(make_descriptor("new", created_offset=10), [], [ekey("m")], client=new)
        registry.upsert(make_descriptor("old", created_offset=0), [], [ekey("m")], client=old)
        assert registry.resolve(ekey("m"), MetricKind.EXTERNAL) is old

    def test_custom_and_external_indices_are_separate(self, registry, make_descriptor, ckey, ekey):
        registry.upsert(make_descriptor("svc"), [ckey("m")], [], client=object())
        with pytest.raises(NoRouteForMetric):
            registry.resolve(ekey("m"), MetricKind.EXTERNAL)

    def test_unknown_metric_raises_no_route(self, registry, ckey):
        with pytest.raises(NoRouteForMetric):
            registry.resolve(ckey("nothing"), MetricKind.CUSTOM)

    def test_list_metric_keys(self, registry, make_descriptor, ckey, ekey):
        registry.upsert(make_descriptor("a"), [ckey("x"), ckey("y")], [ekey("z")], client=object())
        registry.upsert(make_descriptor("b"), [ckey("y")], [], client=object())
        assert registry.list_metric_keys(MetricKind.CUSTOM) == {ckey("x"), ckey("y")}
        assert registry.list_metric_keys(MetricKind.EXTERNAL) == {ekey("z")}

    def test_backend_without_metric_types_owns_no_entries(self, registry, make_descriptor, check_invariants):
        descriptor = make_descriptor("idle", custom=False, external=False)
        registry.upsert(descriptor, [], [], client=object())

        props = registry.get_properties(descriptor.identity)
        assert props is not None
        assert props.custom_keys == frozenset()
        assert props.external_keys == frozenset()
        assert registry.list_metric_keys(MetricKind.CUSTOM) == set()
        check_invariants(registry.snapshot())


class TestReconcileDiff:
    """Re-upserting prunes stale entries only."""

    def test_shrinking_catalog_prunes_sole_provider_index(self, registry, make_descriptor, ckey, check_invariants):
        descriptor = make_descriptor("svc")
        registry.upsert(descriptor, [ckey("A"), ckey("B")], client=object())
        before_b = registry.candidates(ckey("B"))

        registry.upsert(descriptor, [ckey("B")], client=object())

        assert ckey("A") not in registry.list_metric_keys(MetricKind.CUSTOM)
        with pytest.raises(NoRouteForMetric):
            registry.resolve(ckey("A"))
        assert registry.candidates(ckey("B")) == before_b
        check_invariants(registry.snapshot())

    def test_shrinking_catalog_keeps_other_providers(self, registry, make_descriptor, ckey, check_invariants):
        other_client = object()
        registry.upsert(make_descriptor("svc", priority=1), [ckey("A"), ckey("B")], client=object())
        registry.upsert(make_descriptor("other", priority=2), [ckey("A")], client=other_client)

        registry.upsert(make_descriptor("svc", priority=1), [ckey("B")], client=object())

        assert [e.identity.name for e in registry.candidates(ckey("A"))] == ["other"]
        assert registry.resolve(ckey("A")) is other_client
        check_invariants(registry.snapshot())

    def test_priority_change_reorders_existing_entries(self, registry, make_descriptor, ckey):
        a, b = object(), object()
        registry.upsert(make_descriptor("a", priority=1), [ckey("m")], client=a)
        registry.upsert(make_descriptor("b", priority=2), [ckey("m")], client=b)
        assert registry.resolve(ckey("m")) is a

        registry.upsert(make_descriptor("a", priority=3), [ckey("m")], client=a)
        assert registry.resolve(ckey("m")) is b

    def test_properties_replaced_wholesale(self, registry, make_descriptor, ckey, ekey):
        descriptor = make_descriptor("svc")
        registry.upsert(descriptor, [ckey("A")], [ekey("E")], client=object())
        registry.upsert(descriptor, [ckey("B")], [], client=object())

        props = registry.get_properties(descriptor.identity)
        assert props.custom_keys == frozenset({ckey("B")})
        assert props.external_keys == frozenset()
        assert registry.list_metric_keys(MetricKind.EXTERNAL) == set()

    def test_upsert_returns_replaced_client(self, registry, make_descriptor, ckey):
        descriptor = make_descriptor("svc")
        first, second = object(), object()
        assert registry.upsert(descriptor, [ckey("m")], client=first) is None
        assert registry.upsert(descriptor, [ckey("m")], client=second) is first
        assert registry.upsert(descriptor, [ckey("m")], client=second) is None

    def test_malformed_keys_are_not_indexed(self, registry, make_descriptor, ckey, ekey, check_invariants):
        descriptor = make_descriptor("svc")
        registry.upsert(descriptor, [ckey("ok"), "garbage", ekey("wrong-kind")], [None], client=object())

        assert registry.list_metric_keys(MetricKind.CUSTOM) == {ckey("ok")}
        assert registry.list_metric_keys(MetricKind.EXTERNAL) == set()
        check_invariants(registry.snapshot())


class TestClientConstruction:
    """Client factory failures leave the registry untouched."""

    def test_factory_builds_client_when_none_given(self, make_descriptor, ckey):
        built = object()
        factory = MagicMock(return_value=built)
        registry = BackendRegistry(client_factory=factory)
        descriptor = make_descriptor("svc")

        registry.upsert(descriptor, [ckey("m")])

        factory.assert_called_once_with(descriptor)
        assert registry.resolve(ckey("m")) is built

    def test_factory_failure_raises_backend_unreachable(self, make_descriptor, ckey):
        registry = BackendRegistry(client_factory=MagicMock(side_effect=OSError("no token")))
        with pytest.raises(BackendUnreachable) as exc_info:
            registry.upsert(make_descriptor("svc"), [ckey("m")])
        assert "no token" in str(exc_info.value)
        assert len(registry) == 0
        assert registry.list_metric_keys(MetricKind.CUSTOM) == set()

    def test_factory_failure_keeps_previous_state(self, make_descriptor, ckey):
        original = object()
        factory = MagicMock(side_effect=[original, ValueError("bad port")])
        registry = BackendRegistry(client_factory=factory)
        descriptor = make_descriptor("svc")

        registry.upsert(descriptor, [ckey("A")])
        with pytest.raises(BackendUnreachable):
            registry.upsert(descriptor, [ckey("B")])

        assert registry.list_metric_keys(MetricKind.CUSTOM) == {ckey("A")}
        assert registry.resolve(ckey("A")) is original

    def test_build_client_passes_backend_unreachable_through(self, make_descriptor):
        descriptor = make_descriptor("svc")
        error = BackendUnreachable(descriptor.identity, "dns lookup failed")

        with pytest.raises(BackendUnreachable) as exc_info:
            build_client(MagicMock(side_effect=error), descriptor)
        assert exc_info.value is error

    def test_no_client_and_no_factory_is_an_error(self, registry, make_descriptor):
        with pytest.raises(ValueError):
            registry.upsert(make_descriptor("svc"))


class TestRemove:
    """Removal prunes every owned entry."""

    def test_removing_sole_backend_drops_route(self, registry, make_descriptor, ckey, ekey, check_invariants):
        descriptor = make_descriptor("svc")
        registry.upsert(descriptor, [ckey("m")], [ekey("e")], client=object())

        removed = registry.remove(descriptor.identity)

        assert removed is not None
        with pytest.raises(NoRouteForMetric):
            registry.resolve(ckey("m"))
        with pytest.raises(NoRouteForMetric):
            registry.resolve(ekey("e"))
        assert ckey("m") not in registry.list_metric_keys(MetricKind.CUSTOM)
        assert ekey("e") not in registry.list_metric_keys(MetricKind.EXTERNAL)
        check_invariants(registry.snapshot())

    def test_remove_unknown_is_noop(self, registry, make_descriptor, ckey):
        registry.upsert(make_descriptor("svc"), [ckey("m")], client=object())
        assert registry.remove(BackendIdentity("monitoring", "never-registered")) is None
        assert len(registry) == 1

    def test_remove_twice_is_noop(self, registry, make_descriptor, ckey):
        descriptor = make_descriptor("svc")
        registry.upsert(descriptor, [ckey("m")], client=object())
        registry.remove(descriptor.identity)
        assert registry.remove(descriptor.identity) is None

    def test_remove_leaves_other_backends(self, registry, make_descriptor, ckey, check_invariants):
        keep = object()
        registry.upsert(make_descriptor("a"), [ckey("m")], client=object())
        registry.upsert(make_descriptor("b", created_offset=5), [ckey("m")], client=keep)

        registry.remove(BackendIdentity("monitoring", "a"))

        assert registry.resolve(ckey("m")) is keep
        check_invariants(registry.snapshot())

    @pytest.mark.asyncio
    async def test_close_closes_owned_clients(self, registry, make_descriptor, ckey, fake_backend):
        client = fake_backend(BackendIdentity("monitoring", "svc"))
        registry.upsert(make_descriptor("svc"), [ckey("m")], client=client)

        await registry.close()

        assert client.closed
        assert len(registry) == 0
        assert registry.list_metric_keys(MetricKind.CUSTOM) == set()


class TestResolveRaces:
    """Defensive paths for states the lock normally prevents."""

    def test_empty_index_raises_no_candidate(self, registry, ckey):
        registry._indices[MetricKind.CUSTOM][ckey("m")] = PriorityIndex(ckey("m"))
        with pytest.raises(NoCandidate):
            registry.resolve(ckey("m"))

    def test_missing_properties_raises(self, registry, make_descriptor, ckey):
        descriptor = make_descriptor("svc")
        registry.upsert(descriptor, [ckey("m")], client=object())
        del registry._properties[descriptor.identity]

        with pytest.raises(BackendPropertiesMissing) as exc_info:
            registry.resolve(ckey("m"))
        assert exc_info.value.identity == descriptor.identity


class TestEndToEndScenario:
    """Failover from the oldest backend to the next one."""

    def test_failover_on_removal(self, registry, make_descriptor, ekey):
        svc_a, svc_b = object(), object()
        registry.upsert(make_descriptor("svcA", priority=1, created_offset=1), [], [ekey("M")], client=svc_a)
        registry.upsert(make_descriptor("svcB", priority=1, created_offset=2), [], [ekey("M")], client=svc_b)

        assert registry.resolve(ekey("M")) is svc_a
        assert registry.resolve_identity(ekey("M")).name == "svcA"

        registry.remove(BackendIdentity("monitoring", "svcA"))

        assert registry.resolve(ekey("M")) is svc_b


class TestInvariants:
    """Invariants hold after arbitrary operation sequences."""

    def test_random_operations_preserve_invariants(self, registry, make_descriptor, ckey, ekey, check_invariants):
        rng = random.Random(1234)
        names = ["a", "b", "c", "d"]
        custom_pool = [ckey(f"c{i}") for i in range(6)]
        external_pool = [ekey(f"e{i}") for i in range(4)]

        for _ in range(300):
            name = rng.choice(names)
            if rng.random() < 0.25:
                registry.remove(BackendIdentity("monitoring", name))
            else:
                registry.upsert(
                    make_descriptor(name, priority=rng.randint(0, 3), created_offset=names.index(name)),
                    rng.sample(custom_pool, rng.randint(0, len(custom_pool))),
                    rng.sample(external_pool, rng.randint(0, len(external_pool))),
                    client=object(),
                )
            check_invariants(registry.snapshot())

    def test_concurrent_resolve_never_sees_partial_upsert(self, registry, make_descriptor, ckey, check_invariants):
        descriptor = make_descriptor("svc")
        registry.upsert(make_descriptor("steady", priority=9), [ckey("B")], client=object())
        stop = threading.Event()
        errors = []

        def writer():
            for i in range(500):
                keys = [ckey("A"), ckey("B")] if i % 2 else [ckey("B")]
                registry.upsert(descriptor, keys, client=object())
                if i % 7 == 0:
                    registry.remove(descriptor.identity)
            stop.set()

        def reader():
            while not stop.is_set():
                try:
                    registry.resolve(ckey("B"))
                    try:
                        registry.resolve(ckey("A"))
                    except NoRouteForMetric:
                        pass
                    check_invariants(registry.snapshot())
                except BackendPropertiesMissing as e:
                    errors.append(e)
                except AssertionError as e:
                    errors.append(e)

        threads = [threading.Thread(target=reader) for _ in range(4)]
        threads.append(threading.Thread(target=writer))
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert errors == []
        check_invariants(registry.snapshot())


class TestUpsertAtomicity:
    """A failed upsert leaves the registry as it was."""

    def test_naive_and_aware_timestamps_share_an_index(self, registry, make_descriptor, ckey, check_invariants):
        naive = BackendDescriptor(
            identity=BackendIdentity("monitoring", "naive"),
            port=443,
            priority=1,
            created_at=datetime(2023, 1, 1),
            custom_metrics=True,
        )
        registry.upsert(make_descriptor("aware"), [ckey("m")], client=object())
        registry.upsert(naive, [ckey("m")], client=object())

        check_invariants(registry.snapshot())
        assert registry.resolve_identity(ckey("m")) == naive.identity

    def test_index_failure_leaves_state_unchanged(self, registry, make_descriptor, ckey, check_invariants, monkeypatch):
        first = make_descriptor("a")
        client = object()
        registry.upsert(first, [ckey("m")], client=client)
        before = registry.snapshot()

        def broken(self, entry):
            raise TypeError("cannot order entries")

        monkeypatch.setattr(PriorityIndex, "with_entry", broken)
        with pytest.raises(TypeError):
            registry.upsert(make_descriptor("b"), [ckey("m"), ckey("n")], client=object())
        with pytest.raises(TypeError):
            registry.upsert(first, [ckey("n")], client=object())

        after = registry.snapshot()
        check_invariants(after)
        assert after.properties == before.properties
        assert after.custom_index == before.custom_index
        assert registry.resolve(ckey("m")) is client
