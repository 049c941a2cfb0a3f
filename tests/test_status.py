"""
Tests for the bundle status model
"""

# Standard
from unittest import mock

# Third Party
import pytest

# Local
from appbundle import status
from appbundle.bundle import Bundle, ComponentStatus, GroupStatus, Phase
from appbundle.exceptions import ResourceConflictError
from appbundle.test_helpers.helpers import MockDeployManager, setup_bundle_cr

## Helpers #####################################################################


def make_bundle(current_status=None, generation=1):
    cr = setup_bundle_cr(generation=generation)
    if current_status is not None:
        cr["status"] = current_status
    return Bundle.from_manifest(cr)


def ready_condition(bundle_status):
    return status.get_condition("Ready", bundle_status)


## Helpers under test ##########################################################


def test_get_phase():
    assert status.get_phase({}) is None
    assert status.get_phase(None) is None
    assert status.get_phase({"phase": "Deployed"}) == Phase.DEPLOYED


def test_get_condition_missing():
    assert status.get_condition("Ready", {}) == {}
    assert status.get_condition("Ready", {"conditions": [{"type": "Other"}]}) == {}


def test_set_condition_keeps_timestamp():
    """The transition time only moves when the status flips"""
    old = {
        "type": "Ready",
        "status": "False",
        "reason": "Pending",
        status.TIMESTAMP_KEY: "then",
    }
    new = dict(old, reason="DeploymentFailed", **{status.TIMESTAMP_KEY: "now"})
    conditions = status.set_condition([old], new)
    assert conditions == [dict(new, **{status.TIMESTAMP_KEY: "then"})]

    flipped = dict(new, status="True")
    assert status.set_condition([old], flipped) == [flipped]


def test_set_condition_other_types_kept():
    other = {"type": "Other", "status": "True"}
    new = {"type": "Ready", "status": "True"}
    assert status.set_condition([other], new) == [other, new]


## make_bundle_status ##########################################################


def test_pending_status():
    bundle_status = status.make_bundle_status(make_bundle(), Phase.PENDING)
    assert bundle_status["phase"] == "Pending"
    assert "observedGeneration" not in bundle_status
    cond = ready_condition(bundle_status)
    assert cond["status"] == "False"
    assert cond["reason"] == "Pending"


def test_deployed_status():
    """A successful pass advances the observed generation"""
    groups = [
        GroupStatus(
            name="g",
            phase=Phase.DEPLOYED,
            message="done",
            component_statuses=[
                ComponentStatus(name="c", phase=Phase.DEPLOYED, sync_wave=0)
            ],
        )
    ]
    bundle_status = status.make_bundle_status(
        make_bundle(generation=3), Phase.DEPLOYED, "all good", groups
    )
    assert bundle_status["phase"] == "Deployed"
    assert bundle_status["message"] == "all good"
    assert bundle_status["observedGeneration"] == 3
    assert bundle_status["groupStatuses"] == [
        {
            "name": "g",
            "phase": "Deployed",
            "message": "done",
            "componentStatuses": [{"name": "c", "phase": "Deployed", "syncWave": 0}],
        }
    ]
    cond = ready_condition(bundle_status)
    assert cond["status"] == "True"
    assert cond["reason"] == "DeploymentComplete"
    assert cond["observedGeneration"] == 3


def test_failed_status_keeps_observed_generation():
    """A failed pass leaves the last successful generation in place"""
    bundle = make_bundle({"phase": "Deployed", "observedGeneration": 1}, generation=2)
    bundle_status = status.make_bundle_status(bundle, Phase.FAILED, "boom")
    assert bundle_status["observedGeneration"] == 1
    cond = ready_condition(bundle_status)
    assert cond["status"] == "False"
    assert cond["reason"] == "DeploymentFailed"
    assert cond["message"] == "boom"


def test_deploying_keeps_previous_outcome():
    """A new pass does not clobber the outcome of the previous one"""
    previous = status.make_bundle_status(make_bundle(), Phase.DEPLOYED, "ok")
    bundle_status = status.make_bundle_status(make_bundle(previous), Phase.DEPLOYING)
    assert bundle_status["phase"] == "Deploying"
    assert ready_condition(bundle_status) == ready_condition(previous)


def test_deploying_after_pending():
    pending = status.make_bundle_status(make_bundle(), Phase.PENDING)
    bundle_status = status.make_bundle_status(make_bundle(pending), Phase.DEPLOYING)
    assert ready_condition(bundle_status)["reason"] == "DeploymentInProgress"


## Writing #####################################################################


def test_status_changed_ignores_timestamps():
    first = status.make_bundle_status(make_bundle(), Phase.PENDING)
    second = status.make_bundle_status(make_bundle(), Phase.PENDING)
    second["conditions"][0][status.TIMESTAMP_KEY] = "1970-01-01T00:00:00Z"
    assert not status.status_changed(first, second)
    assert status.status_changed(
        first, status.make_bundle_status(make_bundle(), Phase.DEPLOYING)
    )


def test_update_bundle_status_writes():
    cr = setup_bundle_cr()
    dm = MockDeployManager(resources=[cr])
    bundle = Bundle.from_manifest(cr)
    new_status = status.make_bundle_status(bundle, Phase.PENDING)
    status.update_bundle_status(dm, bundle, new_status)
    assert dm.status_phases() == ["Pending"]
    assert bundle.status == new_status
    assert dm.get_obj(cr["kind"], cr["metadata"]["name"], "test")["status"] == (
        new_status
    )


def test_update_bundle_status_unchanged():
    """An unchanged status is not written"""
    bundle = make_bundle()
    bundle.manifest["status"] = status.make_bundle_status(bundle, Phase.PENDING)
    dm = MockDeployManager()
    status.update_bundle_status(
        dm, bundle, status.make_bundle_status(bundle, Phase.PENDING)
    )
    dm.set_status.assert_not_called()


def test_update_bundle_status_failure():
    dm = MockDeployManager(set_status_fail=True)
    bundle = make_bundle()
    with pytest.raises(ResourceConflictError):
        status.update_bundle_status(
            dm, bundle, status.make_bundle_status(bundle, Phase.PENDING)
        )
    assert bundle.status == {}


@mock.patch("appbundle.status.now_timestamp", return_value="2024-01-01T00:00:00Z")
def test_now_timestamp_used(_):
    cond = status.make_ready_condition(Phase.PENDING, "", 1)
    assert cond[status.TIMESTAMP_KEY] == "2024-01-01T00:00:00Z"
