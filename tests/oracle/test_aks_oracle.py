from types import SimpleNamespace

import pytest
from azure.core.exceptions import HttpResponseError, ServiceRequestError

from opsentry.config.models import AzureIdentity, OracleSettings
from opsentry.errors import TooLateError, TransientError
from opsentry.oracle.aks import AksOracle, cluster_view


class FakePoller:
    def __init__(self, done=True):
        self._done = done
        self.timeout = None

    def result(self, timeout=None):
        self.timeout = timeout

    def done(self):
        return self._done


class FakeManagedClusters:
    def __init__(self, cluster=None, error=None, abort_error=None, poller=None, kubeconfig=b""):
        self.cluster = cluster
        self.error = error
        self.abort_error = abort_error
        self.poller = poller or FakePoller()
        self.kubeconfig = kubeconfig
        self.calls = []

    def get(self, rg, name, **kwargs):
        self.calls.append(("get", rg, name, kwargs))
        if self.error:
            raise self.error
        return self.cluster

    def begin_abort_latest_operation(self, rg, name, **kwargs):
        self.calls.append(("abort", rg, name, kwargs))
        if self.abort_error:
            raise self.abort_error
        return self.poller

    def list_cluster_admin_credentials(self, rg, name, **kwargs):
        self.calls.append(("creds", rg, name, kwargs))
        kubeconfigs = [SimpleNamespace(name="clusterAdmin", value=self.kubeconfig)] if self.kubeconfig else []
        return SimpleNamespace(kubeconfigs=kubeconfigs)


def _cluster(state, **kw):
    return SimpleNamespace(provisioning_state=state, agent_pool_profiles=[], addon_profiles={}, **kw)


def _oracle(mc, **settings):
    identity = AzureIdentity(subscription_id="sub-1", resource_group="test-rg", cluster_name="test-cluster")
    return AksOracle(identity, OracleSettings(**settings), client=SimpleNamespace(managed_clusters=mc))


def test_in_progress_cluster():
    mc = FakeManagedClusters(_cluster("Upgrading", kubernetes_version="1.29", current_kubernetes_version="1.28"))

    status = _oracle(mc, timeout_s=7, connect_timeout_s=3).get_operation_status()

    assert status.in_progress is True
    assert status.status == "Upgrading"
    assert status.operation_type == "upgrade"
    assert status.operation_id == "test-cluster-Upgrading-1"
    _, rg, name, kwargs = mc.calls[0]
    assert (rg, name) == ("test-rg", "test-cluster")
    assert kwargs == {"connection_timeout": 3, "read_timeout": 7}


def test_succeeded_cluster_is_idle():
    status = _oracle(FakeManagedClusters(_cluster("Succeeded"))).get_operation_status()

    assert status.in_progress is False
    assert status.status == "Succeeded"


def test_unreachable_api_is_transient():
    mc = FakeManagedClusters(error=ServiceRequestError("connection refused"))

    with pytest.raises(TransientError, match="connection refused"):
        _oracle(mc).get_operation_status()


def test_abort_waits_for_poller():
    poller = FakePoller()
    mc = FakeManagedClusters(poller=poller)

    _oracle(mc, abort_timeout_s=120).abort("multiple_threshold_violations_1")

    assert mc.calls[0][0] == "abort"
    assert poller.timeout == 120


def test_abort_conflict_is_too_late():
    err = HttpResponseError(message="Operation already completed")
    err.status_code = 409
    mc = FakeManagedClusters(abort_error=err)

    with pytest.raises(TooLateError):
        _oracle(mc).abort("multiple_threshold_violations_1")


def test_abort_other_http_error_is_transient():
    err = HttpResponseError(message="Internal error")
    err.status_code = 500
    mc = FakeManagedClusters(abort_error=err)

    with pytest.raises(TransientError):
        _oracle(mc).abort("multiple_threshold_violations_1")


def test_abort_that_does_not_finish_is_transient():
    mc = FakeManagedClusters(poller=FakePoller(done=False))

    with pytest.raises(TransientError, match="did not finish"):
        _oracle(mc, abort_timeout_s=1).abort("multiple_threshold_violations_1")


def test_admin_kubeconfig_is_decoded():
    mc = FakeManagedClusters(kubeconfig=b"apiVersion: v1\nkind: Config\n")

    assert _oracle(mc).get_admin_kubeconfig().startswith("apiVersion: v1")


def test_missing_admin_kubeconfig_is_transient():
    with pytest.raises(TransientError, match="no kubeconfigs"):
        _oracle(FakeManagedClusters()).get_admin_kubeconfig()


def test_cluster_view_projects_pools_and_addons():
    cluster = SimpleNamespace(
        provisioning_state="Updating",
        kubernetes_version="1.29",
        current_kubernetes_version="1.29",
        agent_pool_profiles=[SimpleNamespace(name="np1", provisioning_state="Scaling", count=4)],
        addon_profiles={"omsagent": SimpleNamespace(enabled=True)},
    )

    view = cluster_view(cluster)

    assert view.agent_pools[0].name == "np1"
    assert view.agent_pools[0].provisioning_state == "Scaling"
    assert view.agent_pools[0].orchestrator_version is None
    assert view.addons == {"omsagent": True}
