"""
This library holds the readiness predicates for individual kubernetes
resources and the bounded poll loop that waits on them.

| Kind                     | Ready when                                          |
|--------------------------|-----------------------------------------------------|
| Namespace, ConfigMap, .. | immediately (no check)                              |
| Deployment               | ready == updated == available == desired replicas  |
| StatefulSet              | ready == desired replicas                           |
| DaemonSet                | numberReady == desiredNumberScheduled > 0           |
| Job                      | Complete=True (Failed=True fails immediately)       |
| Pod                      | Ready=True                                          |
| anything else            | as soon as it exists                                |
"""

# Standard
from typing import Callable, Optional
import threading
import time

# First Party
import alog

# Local
from . import config, constants
from .deploy_manager import DeployManagerBase
from .exceptions import (
    ReadinessTimeoutError,
    ReconcileCancelledError,
    ResourceConflictError,
    WorkloadFailedError,
    assert_cluster,
)
from .managed_object import ManagedObject

## Globals #####################################################################

log = alog.use_channel("READY")

COMPLETE_CONDITION_KEY = "Complete"
FAILED_CONDITION_KEY = "Failed"

# Type definition for the signature of a readiness predicate
# NOTE: I'm not sure why pylint dislikes this name. In my view, this is a shared
#   global which should have all-caps casing.
READINESS_PREDICATE = Callable[[ManagedObject], bool]  # pylint: disable=invalid-name


## Individual Resources ########################################################


def is_deployment_ready(obj: ManagedObject) -> bool:
    """All desired replicas are ready, updated, and available"""
    desired = obj.nested_int("spec.replicas", 1)
    ready = obj.nested_int("status.readyReplicas")
    updated = obj.nested_int("status.updatedReplicas")
    available = obj.nested_int("status.availableReplicas")
    log.debug3(
        "Deployment %s: desired=%d ready=%d updated=%d available=%d",
        obj.name,
        desired,
        ready,
        updated,
        available,
    )
    return ready == desired and updated == desired and available == desired


def is_statefulset_ready(obj: ManagedObject) -> bool:
    """All desired replicas of a StatefulSet are ready"""
    desired = obj.nested_int("spec.replicas", 1)
    return obj.nested_int("status.readyReplicas") == desired


def is_daemonset_ready(obj: ManagedObject) -> bool:
    """Every scheduled daemon pod is ready and at least one is scheduled"""
    desired = obj.nested_int("status.desiredNumberScheduled")
    if desired == 0:
        log.debug2("DaemonSet %s has nothing scheduled yet", obj.name)
        return False
    return obj.nested_int("status.numberReady") == desired


def is_job_complete(obj: ManagedObject) -> bool:
    """The Job reports a Complete condition

    Raises:
        WorkloadFailedError if the Job reports a Failed condition
    """
    for cond in obj.nested_list("status.conditions"):
        if not isinstance(cond, dict) or str(cond.get("status")).lower() != "true":
            continue
        if cond.get("type") == COMPLETE_CONDITION_KEY:
            return True
        if cond.get("type") == FAILED_CONDITION_KEY:
            reason = cond.get("message") or cond.get("reason") or "job failed"
            raise WorkloadFailedError(f"Job {obj.name} failed: {reason}")
    return False


def is_pod_ready(obj: ManagedObject) -> bool:
    """The Pod reports a Ready condition"""
    return obj.has_true_condition(constants.READY_CONDITION)


_readiness_predicates = {
    "Deployment": is_deployment_ready,
    "StatefulSet": is_statefulset_ready,
    "DaemonSet": is_daemonset_ready,
    "Job": is_job_complete,
    "Pod": is_pod_ready,
}


def get_readiness_predicate(kind: str) -> Optional[READINESS_PREDICATE]:
    """Get the kind-specific predicate, or None if existence is sufficient"""
    return _readiness_predicates.get(kind)


def is_ready(obj: ManagedObject) -> bool:
    """Run the predicate for the object's kind against its current state"""
    predicate = get_readiness_predicate(obj.kind)
    if predicate is None:
        log.debug2("No kind-specific predicate for %s. Present means ready", obj)
        return True
    try:
        return predicate(obj)
    except TypeError as err:
        raise ResourceConflictError(f"Unable to read status of {obj}: {err}") from err


## Poll Loop ###################################################################


def wait_ready(  # pylint: disable=too-many-arguments
    deploy_manager: DeployManagerBase,
    resource: ManagedObject,
    stop_event: Optional[threading.Event] = None,
    poll_interval: Optional[float] = None,
    timeout: Optional[float] = None,
    predicate: Optional[READINESS_PREDICATE] = None,
):
    """Block until the given resource is ready in the cluster

    The state is checked immediately and then once per poll interval. A
    resource that is not found yet is simply not ready.

    Args:
        deploy_manager:  DeployManagerBase
            The deploy manager used to fetch the current state
        resource:  ManagedObject
            The resource to wait on. Only its identity is used.
        stop_event:  Optional[threading.Event]
            When set, the wait is abandoned
        poll_interval:  Optional[float]
            Seconds between checks. Defaults to config.
        timeout:  Optional[float]
            Seconds before giving up. Defaults to config.
        predicate:  Optional[READINESS_PREDICATE]
            Override for the kind-based predicate

    Raises:
        ReadinessTimeoutError: the predicate never became true
        WorkloadFailedError: the resource reported an explicit failure
        ReconcileCancelledError: stop_event was set while waiting
        ResourceConflictError: the state could not be fetched
    """
    kind = resource.kind
    if predicate is None and kind in constants.IMMEDIATELY_READY_KINDS:
        log.info("Resource is immediately ready: %s", resource)
        return

    poll_interval = (
        config.readiness.poll_interval_seconds
        if poll_interval is None
        else poll_interval
    )
    timeout = config.readiness.timeout_seconds if timeout is None else timeout
    check = predicate or is_ready
    deadline = time.monotonic() + timeout

    with alog.ContextTimer(log.debug, "Waited for %s: ", resource):
        while True:
            if stop_event is not None and stop_event.is_set():
                raise ReconcileCancelledError(f"Cancelled waiting for {resource}")

            success, content = deploy_manager.get_object_current_state(
                kind=kind,
                name=resource.name,
                namespace=resource.namespace,
                api_version=resource.api_version,
            )
            assert_cluster(success, f"Failed to fetch current state of {resource}")
            if content is None:
                log.debug("Resource not found yet, waiting: %s", resource)
            elif check(ManagedObject(content)):
                log.info("Resource is ready: %s", resource)
                return
            else:
                log.debug2("Resource not ready yet: %s", resource)

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise ReadinessTimeoutError(
                    f"Timed out after {timeout}s waiting for {kind} {resource.name} to become ready"
                )
            if _wait_interval(stop_event, min(poll_interval, remaining)):
                raise ReconcileCancelledError(f"Cancelled waiting for {resource}")


def _wait_interval(stop_event: Optional[threading.Event], seconds: float) -> bool:
    """Sleep for the interval. Returns True if cancelled during the sleep."""
    if stop_event is None:
        time.sleep(seconds)
        return False
    return stop_event.wait(seconds)
