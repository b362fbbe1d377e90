import threading
import time

from urllib3.exceptions import ReadTimeoutError

from opsentry.config.models import ReconcilerSettings
from opsentry.controller.poller import OperationPoller, ReconcileQueue
from opsentry.controller.reconciler import OperationReconciler, ReconcileAction
from opsentry.errors import TransientError
from opsentry.records.models import EVENT_DELETED, OperationRecord, OperationSpec, RecordEvent
from opsentry.records.store import KubernetesRecordStore


def _poller(store, oracle, identity, **settings):
    cfg = ReconcilerSettings(store_retry_delay_s=0, **settings)
    reconciler = OperationReconciler(store, oracle, identity, cfg, sleep=lambda _s: None)
    return OperationPoller(reconciler, store, retry_delay=0)


def _wait_for(pred, timeout=2.0):
    end = time.time() + timeout
    while time.time() < end:
        if pred():
            return True
        time.sleep(0.01)
    return False


def test_reconcile_queue_collapses_duplicate_names():
    q = ReconcileQueue()
    q.put("a")
    q.put("b")
    q.put("a")

    assert len(q) == 2
    assert q.get(timeout=0) == "a"
    assert q.get(timeout=0) == "b"
    assert q.get(timeout=0) is None


def test_poll_cycle_survives_oracle_errors(fake_store, fake_oracle, identity):
    store = fake_store()
    oracle = fake_oracle(error=TransientError("timeout"))
    p = _poller(store, oracle, identity)

    results = [p.poll_once() for _ in range(3)]

    assert all(not r.ok for r in results)
    assert p.cycles == 3
    assert store.calls == []


def test_periodic_orphan_cleanup(fake_store, fake_oracle, identity, in_progress):
    store = fake_store()
    p = _poller(store, fake_oracle(status=in_progress), identity, cleanup_every_cycles=2)

    p.poll_once()
    assert not [c for c in store.calls if c[0] == "list"]
    p.poll_once()
    assert [c for c in store.calls if c[0] == "list"] == [("list", "opsentry.io/cluster-name=test-cluster")]


def test_run_polls_until_stopped(fake_store, fake_oracle, identity, in_progress):
    store = fake_store()
    oracle = fake_oracle(status=in_progress)
    p = _poller(store, oracle, identity, requeue_interval_s=0.01)
    stop = threading.Event()

    t = threading.Thread(target=p.run, args=(stop,))
    t.start()
    assert _wait_for(lambda: oracle.status_calls >= 3)
    stop.set()
    t.join(2)

    assert not t.is_alive()
    assert list(store.records) == ["op-test-cluster-updating"]


def test_record_event_triggers_reconcile(fake_store, fake_oracle, identity, in_progress):
    store = fake_store()
    oracle = fake_oracle(status=in_progress)
    p = _poller(store, oracle, identity)
    record = OperationRecord(
        name="op-test-cluster-updating",
        spec=OperationSpec(cluster_name="test-cluster", resource_group="test-rg",
                           operation_status="Updating", in_progress=True),
    )
    stop = threading.Event()

    # someone deleted the record of a still running operation
    p.handle_record_event(RecordEvent(type=EVENT_DELETED, record=record))
    t = threading.Thread(target=p.serve_requests, args=(stop,))
    t.start()
    assert _wait_for(lambda: "op-test-cluster-updating" in store.records)
    stop.set()
    t.join(2)

    assert oracle.status_calls == 1


class TimingOutCustomApi:
    def __init__(self):
        self.attempts = 0

    def get_namespaced_custom_object(self, *args, **kwargs):
        self.attempts += 1
        raise ReadTimeoutError(None, "/apis/opsentry.io/v1", "Read timed out. (read timeout=30)")


def test_poll_loop_survives_store_timeouts(fake_oracle, identity, in_progress):
    api = TimingOutCustomApi()
    store = KubernetesRecordStore(namespace="default", custom_api=api)
    oracle = fake_oracle(status=in_progress)
    p = _poller(store, oracle, identity, requeue_interval_s=0.01)
    stop = threading.Event()

    t = threading.Thread(target=p.run, args=(stop,))
    t.start()
    assert _wait_for(lambda: p.cycles >= 3)
    assert t.is_alive()
    stop.set()
    t.join(2)

    # each cycle exhausted its bounded retries and failed on its own
    assert api.attempts >= 9
    assert p.poll_once().action == ReconcileAction.ERROR


class ExplodingReconciler:
    requeue_after = 0.01

    def __init__(self):
        self.calls = 0

    def reconcile(self, request_name=None):
        self.calls += 1
        raise RuntimeError("unexpected")


def test_loops_keep_running_when_reconcile_raises():
    reconciler = ExplodingReconciler()
    p = OperationPoller(reconciler, retry_delay=0)
    stop = threading.Event()

    poll = threading.Thread(target=p.run, args=(stop,))
    serve = threading.Thread(target=p.serve_requests, args=(stop,))
    poll.start()
    serve.start()
    p.request("op-test-cluster-updating")
    assert _wait_for(lambda: reconciler.calls >= 4)
    assert poll.is_alive() and serve.is_alive()
    stop.set()
    poll.join(2)
    serve.join(3)

    assert not poll.is_alive()
    assert not serve.is_alive()
