"""
Tests for the BundleController entry point
"""

# Standard
from datetime import timedelta
from unittest import mock
import copy

# Third Party
import pytest

# Local
from appbundle import constants
from appbundle.controller import BundleController, ReconciliationResult, RequeueParams
from appbundle.exceptions import ManifestParseError, ResourceConflictError
from appbundle.log_format import BundleJsonFormatter
from appbundle.test_helpers.helpers import (
    TEST_BUNDLE_NAME,
    TEST_NAMESPACE,
    MockDeployManager,
    configure_logging,
    library_config,
    make_component,
    make_deployment,
    make_group,
    make_namespace,
    setup_bundle_cr,
)

## Helpers #####################################################################


def scenario_groups():
    return [
        make_group("infra", [make_component("ns", make_namespace())], order=0),
        make_group("app", [make_component("deploy", make_deployment())], order=1),
    ]


def setup_controller(cr=None, **kwargs):
    cr = cr or setup_bundle_cr(groups=scenario_groups())
    dm = MockDeployManager(resources=[cr], **kwargs)
    return BundleController(deploy_manager=dm), dm, cr


def current_bundle(dm):
    return dm.get_obj(constants.BUNDLE_KIND, TEST_BUNDLE_NAME, TEST_NAMESPACE)


@pytest.fixture(autouse=True)
def restore_logging():
    """configure_logging reconfigures alog globally, so put the test config
    back when each test is done
    """
    yield
    configure_logging()


## Data models #################################################################


def test_requeue_params_default():
    assert RequeueParams().requeue_after == timedelta(seconds=60)
    with library_config(requeue_after_seconds=5):
        assert RequeueParams().requeue_after == timedelta(seconds=5)


def test_reconciliation_result_defaults():
    result = ReconciliationResult(requeue=False)
    assert result.exception is None
    assert isinstance(result.requeue_params, RequeueParams)


## reconcile ###################################################################


def test_reconcile_deploys_bundle():
    """A new bundle gets its finalizer and moves Pending -> Deploying ->
    Deployed
    """
    ctrlr, dm, cr = setup_controller()
    result = ctrlr.reconcile(cr)
    assert result.requeue is False
    assert result.exception is None

    assert dm.status_phases() == ["Pending", "Deploying", "Deployed"]
    bundle = current_bundle(dm)
    assert bundle["metadata"]["finalizers"] == [constants.BUNDLE_FINALIZER]
    assert bundle["status"]["phase"] == "Deployed"
    assert bundle["status"]["observedGeneration"] == 1

    ns = dm.get_obj("Namespace", "app-ns")
    assert ns["metadata"]["annotations"][constants.SYNC_WAVE_ANNOTATION] == "0"
    deploy = dm.get_obj("Deployment", "app", TEST_NAMESPACE)
    assert deploy["metadata"]["annotations"][constants.SYNC_WAVE_ANNOTATION] == "100"


def test_reconcile_twice():
    """A second reconcile does not add the finalizer or set Pending again"""
    ctrlr, dm, cr = setup_controller()
    ctrlr.reconcile(cr)
    replace_count = dm.replace.call_count
    ctrlr.reconcile(cr)
    assert dm.status_phases() == [
        "Pending",
        "Deploying",
        "Deployed",
        "Deploying",
        "Deployed",
    ]
    # Only the two deployed resources are replaced
    assert dm.replace.call_count == replace_count + 2
    assert current_bundle(dm)["metadata"]["finalizers"] == [
        constants.BUNDLE_FINALIZER
    ]


def test_reconcile_not_found():
    """A bundle that is gone is ignored"""
    dm = MockDeployManager()
    ctrlr = BundleController(deploy_manager=dm)
    result = ctrlr.reconcile(setup_bundle_cr())
    assert result.requeue is False
    dm.create.assert_not_called()
    dm.set_status.assert_not_called()


def test_reconcile_uses_live_state():
    """The delivered object only supplies the identity of the bundle"""
    ctrlr, dm, cr = setup_controller()
    stale = copy.deepcopy(cr)
    stale["spec"]["groups"] = []
    ctrlr.reconcile(stale)
    assert dm.has_obj("Deployment", "app", TEST_NAMESPACE)


def test_reconcile_deletion():
    """A deleted bundle is cleaned up and its finalizer released"""
    ctrlr, dm, cr = setup_controller()
    ctrlr.reconcile(cr)
    dm.disable([current_bundle(dm)])
    assert current_bundle(dm)["metadata"]["deletionTimestamp"]

    result = ctrlr.reconcile(cr)
    assert result.requeue is False
    assert current_bundle(dm) is None
    assert not dm.has_obj("Namespace", "app-ns")
    assert not dm.has_obj("Deployment", "app", TEST_NAMESPACE)


def test_reconcile_deletion_without_finalizer():
    """A deleting bundle without the token is left alone"""
    cr = setup_bundle_cr(groups=scenario_groups())
    cr["metadata"]["finalizers"] = ["other/finalizer"]
    cr["metadata"]["deletionTimestamp"] = "2024-01-01T00:00:00Z"
    ctrlr, dm, _ = setup_controller(cr)
    result = ctrlr.reconcile(cr)
    assert result.requeue is False
    dm.replace.assert_not_called()
    dm.disable.assert_not_called()
    dm.set_status.assert_not_called()


def test_reconcile_invalid_package_ref():
    """A bundle with an incomplete package reference records the failure and
    can still be deleted
    """
    groups = [
        make_group("infra", [make_component("ns", make_namespace())], order=0),
        make_group(
            "apps", [make_component("web", package_ref={"repository": "r"})], order=1
        ),
    ]
    ctrlr, dm, cr = setup_controller(
        setup_bundle_cr(groups=groups, package_integration={"enabled": True})
    )
    result = ctrlr.safe_reconcile(cr)
    assert result.requeue
    assert "packageRef.package is required" in str(result.exception)
    status = current_bundle(dm)["status"]
    assert status["phase"] == "Failed"
    assert status["groupStatuses"][1]["componentStatuses"][0]["phase"] == "Failed"

    dm.disable([current_bundle(dm)])
    result = ctrlr.safe_reconcile(cr)
    assert result.requeue is False
    assert current_bundle(dm) is None
    assert not dm.has_obj("Namespace", "app-ns")


def test_reconcile_preflight():
    """The repository check runs when the integration is enabled"""
    cr = setup_bundle_cr(
        groups=scenario_groups(), package_integration={"enabled": True}
    )
    ctrlr, _, _ = setup_controller(cr)
    with mock.patch.object(
        ctrlr.package_reconciler, "preflight", return_value=False
    ) as preflight:
        ctrlr.reconcile(cr)
    preflight.assert_called_once()


def test_reconcile_failure_propagates():
    groups = [make_group("g", [make_component("bad", "kind: [unterminated")])]
    ctrlr, dm, cr = setup_controller(setup_bundle_cr(groups=groups))
    with pytest.raises(ManifestParseError):
        ctrlr.reconcile(cr)
    assert current_bundle(dm)["status"]["phase"] == "Failed"


def test_reconcile_fetch_failure():
    ctrlr, _, cr = setup_controller(get_state_fail=True)
    with pytest.raises(ResourceConflictError):
        ctrlr.reconcile(cr)


## safe_reconcile ##############################################################


def test_safe_reconcile_success():
    ctrlr, _, cr = setup_controller()
    result = ctrlr.safe_reconcile(cr)
    assert result.requeue is False
    assert result.exception is None


def test_safe_reconcile_bundle_error():
    """A failed pass asks to be requeued"""
    groups = [make_group("g", [make_component("bad", "kind: [unterminated")])]
    ctrlr, _, cr = setup_controller(setup_bundle_cr(groups=groups))
    result = ctrlr.safe_reconcile(cr)
    assert result.requeue is True
    assert isinstance(result.exception, ManifestParseError)
    assert result.requeue_params.requeue_after == timedelta(seconds=60)


def test_safe_reconcile_unexpected_error():
    ctrlr, _, cr = setup_controller()
    with mock.patch.object(
        ctrlr.orchestrator, "run_pass", side_effect=RuntimeError("boom")
    ):
        result = ctrlr.safe_reconcile(cr)
    assert result.requeue is True
    assert isinstance(result.exception, RuntimeError)


def test_safe_reconcile_cancelled():
    """A cancelled pass is not requeued"""
    ctrlr, dm, cr = setup_controller()
    ctrlr.stop()
    result = ctrlr.safe_reconcile(cr)
    assert result.requeue is False
    assert result.exception is not None
    dm.create.assert_not_called()


## Logging #####################################################################


def test_configure_logging_annotations():
    """Bundle annotations override the logging config"""
    cr = setup_bundle_cr()
    cr["metadata"]["annotations"] = {
        constants.LOG_DEFAULT_LEVEL_NAME: "debug",
        constants.LOG_FILTERS_NAME: "ORCH:debug4",
        constants.LOG_JSON_NAME: "true",
        constants.LOG_THREAD_ID_NAME: "True",
    }
    with mock.patch("alog.configure") as configure:
        BundleController.configure_logging(cr, "some-id")
    kwargs = configure.call_args.kwargs
    assert kwargs["default_level"] == "debug"
    assert kwargs["filters"] == "ORCH:debug4"
    assert kwargs["thread_id"] is True
    formatter = kwargs["formatter"]
    assert isinstance(formatter, BundleJsonFormatter)
    assert formatter.reconciliation_id == "some-id"


def test_configure_logging_defaults():
    with mock.patch("alog.configure") as configure:
        BundleController.configure_logging(setup_bundle_cr(), "some-id")
    kwargs = configure.call_args.kwargs
    assert kwargs["default_level"] == "info"
    assert kwargs["formatter"] == "pretty"
    assert kwargs["thread_id"] is False


def test_generate_id():
    first = BundleController.generate_id()
    assert len(first) == 22
    assert first != BundleController.generate_id()
