"""
This module holds common helper functions for making testing easy
"""

# Standard
from contextlib import contextmanager
from unittest import mock
import copy
import inspect
import os

# First Party
import aconfig
import alog

# Local
from appbundle import constants
from appbundle.config import library_config as config_detail_dict
from appbundle.deploy_manager.dry_run_deploy_manager import DryRunDeployManager

log = alog.use_channel("TEST")


def configure_logging():
    alog.configure(
        os.environ.get("LOG_LEVEL", "off"),
        os.environ.get("LOG_FILTERS", ""),
        formatter="json"
        if os.environ.get("LOG_JSON", "").lower() == "true"
        else "pretty",
        thread_id=os.environ.get("LOG_THREAD_ID", "").lower() == "true",
    )


configure_logging()

TEST_BUNDLE_NAME = "test-bundle"
TEST_BUNDLE_UID = "12345678-1234-1234-1234-123456789012"
TEST_NAMESPACE = "test"
SOME_OTHER_NAMESPACE = "somewhere"


## Manifests ###################################################################


def make_component(name, template=None, order=0, package_ref=None):
    component = {"name": name, "order": order}
    if template is not None:
        component["template"] = template
    if package_ref is not None:
        component["packageRef"] = package_ref
    return component


def make_group(name, components, order=0):
    return {"name": name, "order": order, "components": components}


def setup_bundle_cr(
    groups=None,
    name=TEST_BUNDLE_NAME,
    namespace=TEST_NAMESPACE,
    uid=TEST_BUNDLE_UID,
    generation=1,
    package_integration=None,
    **kwargs,
):
    cr_dict = kwargs or {}
    cr_dict.setdefault("kind", constants.BUNDLE_KIND)
    cr_dict.setdefault("apiVersion", constants.BUNDLE_API_VERSION)
    metadata = cr_dict.setdefault("metadata", {})
    metadata.setdefault("name", name)
    metadata.setdefault("namespace", namespace)
    metadata.setdefault("uid", uid)
    metadata.setdefault("generation", generation)
    spec = cr_dict.setdefault("spec", {})
    spec.setdefault("groups", copy.deepcopy(groups or []))
    if package_integration is not None:
        spec["packageIntegration"] = package_integration
    return cr_dict


def make_deployment(name="app", namespace=None, replicas=1):
    metadata = {"name": name}
    if namespace:
        metadata["namespace"] = namespace
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": metadata,
        "spec": {"replicas": replicas},
    }


def make_namespace(name="app-ns"):
    return {"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": name}}


def make_configmap(name="config", namespace=None, data=None):
    metadata = {"name": name}
    if namespace:
        metadata["namespace"] = namespace
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": metadata,
        "data": data or {"key": "value"},
    }


def make_job(name="job", namespace=None):
    metadata = {"name": name}
    if namespace:
        metadata["namespace"] = namespace
    return {"apiVersion": "batch/v1", "kind": "Job", "metadata": metadata, "spec": {}}


def ready_status(resource: dict) -> dict:
    """Make a status that satisfies the readiness check for the resource"""
    kind = resource.get("kind")
    replicas = (resource.get("spec") or {}).get("replicas", 1)
    if kind == "Deployment":
        return {
            "readyReplicas": replicas,
            "updatedReplicas": replicas,
            "availableReplicas": replicas,
        }
    if kind == "StatefulSet":
        return {"readyReplicas": replicas}
    if kind == "DaemonSet":
        return {"desiredNumberScheduled": 1, "numberReady": 1}
    if kind == "Job":
        return {"conditions": [{"type": "Complete", "status": "True"}]}
    return {"conditions": [{"type": constants.READY_CONDITION, "status": "True"}]}


## Config ######################################################################


@contextmanager
def library_config(**config_overrides):
    """This context manager sets library config values temporarily and reverts
    them on completion
    """
    # Override the configs and hang onto the old values
    old_vals = {}
    for key, val in config_overrides.items():
        if key in config_detail_dict:
            old_vals[key] = config_detail_dict[key]
        if isinstance(val, dict):
            merged = dict(config_detail_dict.get(key) or {})
            merged.update(val)
            val = aconfig.Config(merged, override_env_vars=False)
        config_detail_dict[key] = val

    # Yield to the context
    try:
        yield
    finally:
        # Revert to the old values
        for key in config_overrides:
            if key in old_vals:
                config_detail_dict[key] = old_vals[key]
            else:
                del config_detail_dict[key]


## Mock Deploy Manager #########################################################


def get_failable_method(fail_flag, method, failure_return=False):
    log.debug4(
        "Setting up failable mock of [%s] with fail flag: %s", str(method), fail_flag
    )

    def failable_method(*args, **kwargs):
        if isinstance(fail_flag, Exception) or (
            inspect.isclass(fail_flag) and issubclass(fail_flag, Exception)
        ):
            log.debug4("Raising in failable mock")
            raise fail_flag
        if callable(fail_flag):
            log.debug4("Calling callable fail flag")
            res = fail_flag(*args, **kwargs)
            if res is not None:
                return res
        elif fail_flag:
            log.debug4("Returning %s", failure_return)
            return failure_return
        return method(*args, **kwargs)

    return failable_method


class FailOnce:
    """Helper callable that will fail once on the N'th call"""

    def __init__(self, fail_val, fail_number=1):
        self.call_count = 0
        self.fail_number = fail_number
        self.fail_val = fail_val

    def __call__(self, *_, **__):
        self.call_count += 1
        if self.call_count == self.fail_number:
            log.debug("Failing on call %d with %s", self.call_count, self.fail_val)
            return self.fail_val
        log.debug("Not failing on call %d", self.call_count)
        return None


class MockDeployManager(DryRunDeployManager):
    """The MockDeployManager wraps a standard DryRunDeployManager and adds
    configuration options to simulate failures in each of its operations. It
    can also stand in for the controllers of the cluster by marking every
    created resource as ready.
    """

    def __init__(  # pylint: disable=too-many-arguments
        self,
        create_fail=False,
        replace_fail=False,
        disable_fail=False,
        get_state_fail=False,
        filter_fail=False,
        set_status_fail=False,
        auto_ready=True,
        resources=None,
        **kwargs,
    ):
        super().__init__(resources, **kwargs)
        self.auto_ready = auto_ready
        self.create_fail = create_fail
        self.replace_fail = replace_fail
        self.disable_fail = disable_fail
        self.get_state_fail = get_state_fail
        self.filter_fail = filter_fail
        self.set_status_fail = set_status_fail
        self.enable_mocks()

    #######################
    ## Helpers for Tests ##
    #######################

    def enable_mocks(self):
        """Turn the mocks on"""
        self.create = mock.Mock(
            side_effect=get_failable_method(
                self.create_fail, self._create_maybe_ready, (False, None)
            )
        )
        self.replace = mock.Mock(
            side_effect=get_failable_method(
                self.replace_fail, super().replace, (False, None)
            )
        )
        self.disable = mock.Mock(
            side_effect=get_failable_method(
                self.disable_fail, super().disable, (False, False)
            )
        )
        self.get_object_current_state = mock.Mock(
            side_effect=get_failable_method(
                self.get_state_fail, super().get_object_current_state, (False, None)
            )
        )
        self.filter_objects_current_state = mock.Mock(
            side_effect=get_failable_method(
                self.filter_fail, super().filter_objects_current_state, (False, [])
            )
        )
        self.set_status = mock.Mock(
            side_effect=get_failable_method(
                self.set_status_fail, super().set_status, (False, False)
            )
        )

    def _create_maybe_ready(self, resource_definition):
        if self.auto_ready and resource_definition.get("kind") not in (
            constants.IMMEDIATELY_READY_KINDS
        ):
            resource_definition = copy.deepcopy(resource_definition)
            resource_definition["status"] = ready_status(resource_definition)
        return DryRunDeployManager.create(self, resource_definition)

    def get_obj(self, kind, name, namespace=None, api_version=None):
        return DryRunDeployManager.get_object_current_state(
            self, kind, name, namespace, api_version
        )[1]

    def has_obj(self, *args, **kwargs):
        return self.get_obj(*args, **kwargs) is not None

    def created_names(self):
        """Names of the objects passed to create, in call order"""
        names = []
        for call in self.create.call_args_list:
            definition = call.args[0] if call.args else call.kwargs["resource_definition"]
            names.append(definition["metadata"]["name"])
        return names

    def status_phases(self, kind=constants.BUNDLE_KIND):
        """The phases written through set_status, in call order"""
        return [
            call.kwargs["status"].get("phase")
            for call in self.set_status.call_args_list
            if call.kwargs.get("kind") == kind
        ]
