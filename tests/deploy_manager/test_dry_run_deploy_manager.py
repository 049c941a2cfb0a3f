"""Tests for the DryRunDeployManager

NOTE: The majority of the functionality is thoroughly exercised by all of the
    other unit tests, so the tests here only test elements that are particularly
    delicate and/or not covered elsewhere.
"""

# Third Party
import pytest

# Local
from appbundle.deploy_manager import DryRunDeployManager
from appbundle.deploy_manager.owner_references import make_owner_reference
from appbundle.test_helpers.helpers import (
    SOME_OTHER_NAMESPACE,
    TEST_NAMESPACE,
    make_configmap,
    make_deployment,
    setup_bundle_cr,
)

## Helpers #####################################################################


def get(dm, obj):
    return dm.get_object_current_state(
        kind=obj["kind"],
        name=obj["metadata"]["name"],
        namespace=obj["metadata"].get("namespace"),
        api_version=obj["apiVersion"],
    )[1]


## Tests #######################################################################


def test_create_and_get():
    """Make sure created objects can be fetched and get server fields"""
    dm = DryRunDeployManager()
    obj = make_configmap(namespace=TEST_NAMESPACE)
    success, created = dm.create(obj)
    assert success
    assert created["metadata"]["uid"]
    assert created["metadata"]["resourceVersion"]
    assert get(dm, obj) == created


def test_create_existing_fails():
    """Make sure create does not overwrite"""
    dm = DryRunDeployManager(resources=[make_configmap(namespace=TEST_NAMESPACE)])
    success, content = dm.create(make_configmap(namespace=TEST_NAMESPACE))
    assert not success
    assert content is None


def test_get_missing():
    """Make sure a missing object is a successful lookup of None"""
    dm = DryRunDeployManager()
    assert dm.get_object_current_state("ConfigMap", "nope", TEST_NAMESPACE) == (
        True,
        None,
    )


def test_replace_missing_fails():
    """Make sure replace needs an existing object"""
    dm = DryRunDeployManager()
    assert dm.replace(make_configmap(namespace=TEST_NAMESPACE)) == (False, None)


def test_replace_stale_resource_version():
    """Make sure a replace with an out of date resourceVersion fails"""
    dm = DryRunDeployManager()
    _, created = dm.create(make_configmap(namespace=TEST_NAMESPACE))
    updated = dict(created, data={"key": "new"})
    success, current = dm.replace(updated)
    assert success

    stale = dict(created, data={"key": "newer"})
    assert dm.replace(stale) == (False, None)
    assert get(dm, current)["data"] == {"key": "new"}


def test_replace_keeps_status_and_bumps_generation():
    """Make sure a replace leaves status alone and bumps generation on spec
    changes only
    """
    dm = DryRunDeployManager()
    _, created = dm.create(make_deployment(namespace=TEST_NAMESPACE))
    dm.set_status(
        "Deployment", "app", TEST_NAMESPACE, {"readyReplicas": 1}, api_version="apps/v1"
    )
    current = get(dm, created)

    same_spec = dict(current)
    same_spec.pop("status")
    _, replaced = dm.replace(same_spec)
    assert replaced["status"] == {"readyReplicas": 1}
    assert replaced["metadata"]["generation"] == 1

    new_spec = dict(replaced, spec={"replicas": 2})
    _, replaced = dm.replace(new_spec)
    assert replaced["metadata"]["generation"] == 2
    assert replaced["metadata"]["uid"] == created["metadata"]["uid"]


def test_disable_tolerates_missing():
    """Make sure deleting something that is not there is a no-op success"""
    dm = DryRunDeployManager()
    assert dm.disable([make_configmap(namespace=TEST_NAMESPACE)]) == (True, False)


def test_disable_with_finalizer_defers_deletion():
    """Make sure an object with finalizers is only marked for deletion and is
    removed once its finalizers are cleared
    """
    cr = setup_bundle_cr()
    cr["metadata"]["finalizers"] = ["some/finalizer"]
    dm = DryRunDeployManager(resources=[cr])
    assert dm.disable([cr]) == (True, True)
    current = get(dm, cr)
    assert current["metadata"]["deletionTimestamp"]

    current["metadata"]["finalizers"] = []
    success, _ = dm.replace(current)
    assert success
    assert get(dm, cr) is None


def test_cascading_deletion():
    """Make sure deleting an owner deletes the objects it owns"""
    cr = setup_bundle_cr()
    owned = make_deployment(namespace=TEST_NAMESPACE)
    owned["metadata"]["ownerReferences"] = [make_owner_reference(cr)]
    unowned = make_configmap(namespace=SOME_OTHER_NAMESPACE)
    dm = DryRunDeployManager(resources=[cr, owned, unowned])

    dm.disable([cr])
    assert get(dm, cr) is None
    assert get(dm, owned) is None
    assert get(dm, unowned) is not None


def test_filter_objects_label_selector():
    """Make sure listing filters by namespace and equality label selectors"""
    first = make_configmap(name="first", namespace=TEST_NAMESPACE)
    first["metadata"]["labels"] = {"app": "a", "tier": "web"}
    second = make_configmap(name="second", namespace=TEST_NAMESPACE)
    second["metadata"]["labels"] = {"app": "b"}
    third = make_configmap(name="third", namespace=SOME_OTHER_NAMESPACE)
    third["metadata"]["labels"] = {"app": "a"}
    dm = DryRunDeployManager(resources=[first, second, third])

    success, found = dm.filter_objects_current_state(
        "ConfigMap", namespace=TEST_NAMESPACE, label_selector="app=a"
    )
    assert success
    assert [obj["metadata"]["name"] for obj in found] == ["first"]

    _, found = dm.filter_objects_current_state("ConfigMap", label_selector="app==a")
    assert sorted(obj["metadata"]["name"] for obj in found) == ["first", "third"]


@pytest.mark.parametrize("api_version", [None, "v1"])
def test_set_status(api_version):
    """Make sure set_status writes the status and reports changes"""
    dm = DryRunDeployManager(resources=[make_configmap(namespace=TEST_NAMESPACE)])
    assert dm.set_status(
        "ConfigMap", "config", TEST_NAMESPACE, {"a": 1}, api_version=api_version
    ) == (True, True)
    assert dm.set_status(
        "ConfigMap", "config", TEST_NAMESPACE, {"a": 1}, api_version=api_version
    ) == (True, False)
    assert dm.set_status("ConfigMap", "missing", TEST_NAMESPACE, {}) == (False, False)
