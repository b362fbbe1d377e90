from opsentry.oracle.classify import OperationClassifier, classify_operation_type, is_active_state
from opsentry.oracle.models import AgentPoolView, ClusterView, UNKNOWN_STATUS


def _view(state, **kw):
    return ClusterView(provisioning_state=state, **kw)


def test_active_states_are_case_insensitive():
    assert is_active_state("Upgrading")
    assert is_active_state("updating")
    assert not is_active_state("Succeeded")
    assert not is_active_state("")
    assert not is_active_state(None)


def test_version_change_is_an_upgrade():
    view = _view("Upgrading", kubernetes_version="1.29.2", current_kubernetes_version="1.28.5")

    assert classify_operation_type(view) == "upgrade"


def test_pool_version_change_is_an_upgrade():
    pool = AgentPoolView(name="np1", orchestrator_version="1.29.2", current_orchestrator_version="1.28.5")

    assert classify_operation_type(_view("Updating", agent_pools=(pool,))) == "upgrade"


def test_active_pool_is_a_scale():
    pool = AgentPoolView(name="np1", provisioning_state="Scaling", count=5)

    assert classify_operation_type(_view("Updating", agent_pools=(pool,))) == "node-pool-scale"


def test_addon_change_against_baseline():
    view = _view("Updating", addons={"omsagent": True})

    assert classify_operation_type(view, {"omsagent": False}) == "addon-update"
    assert classify_operation_type(view, {"omsagent": True}) == "update"
    assert classify_operation_type(view, None) == "update"


def test_missing_state_is_unknown_and_idle():
    status = OperationClassifier("aks-1").classify(_view(None))

    assert status.in_progress is False
    assert status.status == UNKNOWN_STATUS


def test_unrecognised_state_fails_open():
    status = OperationClassifier("aks-1").classify(_view("Migrating"))

    assert status.in_progress is False
    assert status.status == "Migrating"


def test_operation_id_changes_per_operation():
    c = OperationClassifier("aks-1")

    first = c.classify(_view("Updating"))
    again = c.classify(_view("Updating"))
    c.classify(_view("Succeeded"))
    second = c.classify(_view("Updating"))

    assert first.operation_id == again.operation_id == "aks-1-Updating-1"
    assert second.operation_id == "aks-1-Updating-2"
    assert c.generation == 2


def test_addon_baseline_is_taken_from_last_idle_poll():
    c = OperationClassifier("aks-1")

    c.classify(_view("Succeeded", addons={"azurepolicy": False}))
    status = c.classify(_view("Updating", addons={"azurepolicy": True}))

    assert status.in_progress is True
    assert status.operation_type == "addon-update"
