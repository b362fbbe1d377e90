import threading

import pytest

from opsentry.config.models import AzureIdentity, ReconcilerSettings
from opsentry.errors import ConflictError, TransientError
from opsentry.observers.dispatcher import EventBus
from opsentry.observers.events import new_ctx
from opsentry.oracle.models import OperationStatus


class Capture:
    def __init__(self): self.events = []
    def notify(self, ev): self.events.append(ev)

    def kinds(self):
        return [e.__class__.__name__ for e in self.events]


class FakeOracle:
    def __init__(self, status=None, error=None, abort_error=None):
        self.status = status
        self.error = error
        self.abort_error = abort_error
        self.status_calls = 0
        self.abort_calls = []

    def get_operation_status(self):
        self.status_calls += 1
        if self.error:
            raise self.error
        return self.status

    def abort(self, reason):
        self.abort_calls.append(reason)
        if self.abort_error:
            raise self.abort_error

    def test_connection(self):
        if self.error:
            raise self.error

    def get_admin_kubeconfig(self):
        return "apiVersion: v1\nkind: Config\n"


class FakeRecordStore:
    """In-memory record store; fail_* counters inject TransientErrors."""

    def __init__(self, records=()):
        self.records = {r.name: r for r in records}
        self.calls = []
        self.fail_create = 0
        self.fail_delete = 0
        self.fail_get = 0
        self.events = []

    def _maybe_fail(self, attr, what):
        n = getattr(self, attr)
        if n > 0:
            setattr(self, attr, n - 1)
            raise TransientError(f"{what} unavailable")

    def get(self, name):
        self.calls.append(("get", name))
        self._maybe_fail("fail_get", "get")
        return self.records.get(name)

    def create(self, record):
        self.calls.append(("create", record.name))
        self._maybe_fail("fail_create", "create")
        if record.name in self.records:
            raise ConflictError(f"{record.name} exists")
        self.records[record.name] = record
        return record

    def delete(self, record):
        self.calls.append(("delete", record.name))
        self._maybe_fail("fail_delete", "delete")
        if record.name not in self.records:
            raise ConflictError(f"{record.name} gone")
        del self.records[record.name]

    def list(self, label_selector=""):
        self.calls.append(("list", label_selector))
        if not label_selector:
            return list(self.records.values())
        key, _, value = label_selector.partition("=")
        return [r for r in self.records.values() if r.labels.get(key) == value]

    def watch(self, stop, label_selector="", resync=None):
        if resync is not None:
            resync(self.list(label_selector))
        for ev in self.events:
            yield ev
        stop.wait()

    def mutations(self):
        return [c for c in self.calls if c[0] in ("create", "delete")]


class FakeSnapshots:
    def __init__(self, snapshot=None, thresholds=None, error=None):
        self.snapshot = snapshot
        self.thresholds = thresholds
        self.error = error
        self.reads = 0
        self.seen = []

    def get_snapshot(self):
        self.reads += 1
        if self.error:
            raise self.error
        self.seen.append(self.snapshot)
        return self.snapshot

    def get_thresholds(self):
        return self.thresholds

    def watch_updates(self, stop):
        stop.wait()
        return iter(())


def healthy_snapshot(**overrides):
    snap = {
        "pod_metrics": {"crashing_percent": 0.0, "pending_percent": 0.0, "restart_percent": 0.0, "total_restarts": 0},
        "node_metrics": {"not_ready_percent": 0.0},
        "container_stats": {"crash_loop_percent": 0.0},
        "serviceHealth": {"healthy": True},
        "resource_usage": {"cpu_usage_percent": 10.0, "memory_usage_percent": 20.0},
    }
    for section, values in overrides.items():
        snap[section] = dict(snap[section], **values)
    return snap


@pytest.fixture
def identity():
    return AzureIdentity(subscription_id="sub-1", resource_group="test-rg", cluster_name="test-cluster")


@pytest.fixture
def settings():
    return ReconcilerSettings(store_retries=3, store_retry_delay_s=0)


@pytest.fixture
def capture():
    return Capture()


@pytest.fixture
def bus(capture):
    return EventBus([capture], ctx=new_ctx(cluster="test-cluster", context="default"))


@pytest.fixture
def fake_oracle():
    return FakeOracle


@pytest.fixture
def fake_store():
    return FakeRecordStore


@pytest.fixture
def fake_snapshots():
    return FakeSnapshots


@pytest.fixture
def snapshot_factory():
    return healthy_snapshot


@pytest.fixture
def in_progress():
    return OperationStatus(in_progress=True, operation_type="update", status="Updating",
                           operation_id="test-cluster-Updating")


@pytest.fixture
def succeeded():
    return OperationStatus(in_progress=False, operation_type="", status="Succeeded",
                           operation_id="test-cluster-Succeeded")
