"""
This module holds the status model the engine writes back to a bundle.

The status is fully recomputed every pass. Its schema is:
{
    "phase": "Pending" | "Deploying" | "Deployed" | "Failed",
    "message": str,
    "observedGeneration": int,   # only advanced on a full successful pass
    "groupStatuses": [
        {
            "name": str,
            "phase": ...,
            "message": str,
            "componentStatuses": [
                {"name", "phase", "message", "syncWave", "resourceRef"}
            ],
        }
    ],
    "conditions": [
        {"type": "Ready", "status": "True"|"False", "reason", "message",
         "observedGeneration", "lastTransitionTime"}
    ],
}

The Ready condition mirrors the outcome of the last finished pass for
status-polling collaborators. It is only set to DeploymentInProgress while no
pass has finished yet.
"""

# Standard
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional
import copy

# Third Party
from deepdiff import DeepDiff

# First Party
import alog

# Local
from . import constants
from .bundle import Bundle, GroupStatus, Phase
from .deploy_manager import DeployManagerBase
from .exceptions import assert_cluster

log = alog.use_channel("STTUS")

## Public ######################################################################

# The key in the condition used for the timestamp
TIMESTAMP_KEY = "lastTransitionTime"

# Status fields
PHASE = "phase"
MESSAGE = "message"
OBSERVED_GENERATION = "observedGeneration"
GROUP_STATUSES = "groupStatuses"
CONDITIONS = "conditions"


class ReadyReason(Enum):
    """Reason constants for the Ready condition"""

    # Nothing has been attempted yet
    PENDING = "Pending"

    # A pass is in progress
    IN_PROGRESS = "DeploymentInProgress"

    # Every component of every group is deployed and ready
    COMPLETE = "DeploymentComplete"

    # A component failed and the pass was aborted
    FAILED = "DeploymentFailed"


_PHASE_REASONS = {
    Phase.PENDING: ReadyReason.PENDING,
    Phase.DEPLOYING: ReadyReason.IN_PROGRESS,
    Phase.DEPLOYED: ReadyReason.COMPLETE,
    Phase.FAILED: ReadyReason.FAILED,
}


def now_timestamp() -> str:
    """Current time in the RFC 3339 form used by kubernetes conditions"""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def get_phase(status: dict) -> Optional[Phase]:
    """Get the phase recorded in a status dict, if any"""
    phase = (status or {}).get(PHASE)
    return Phase(phase) if phase else None


def get_condition(type_name: str, status: dict) -> dict:
    """Extract the given condition type from a status object"""
    for condition in (status or {}).get(CONDITIONS, []):
        if condition.get("type") == type_name:
            return condition
    return {}


def set_condition(conditions: List[dict], condition: dict) -> List[dict]:
    """Set a condition into a list of conditions, replacing any with the same
    type. The transition time is only moved when the condition's status flips.

    Returns:
        conditions:  List[dict]
            A new list with the condition set
    """
    out = []
    replaced = False
    for existing in conditions:
        if existing.get("type") != condition.get("type"):
            out.append(existing)
            continue
        replaced = True
        if existing.get("status") == condition.get("status") and existing.get(
            TIMESTAMP_KEY
        ):
            condition = dict(condition, **{TIMESTAMP_KEY: existing[TIMESTAMP_KEY]})
        out.append(condition)
    if not replaced:
        out.append(condition)
    return out


def make_ready_condition(phase: Phase, message: str, generation: int) -> dict:
    """Make the Ready condition that mirrors the given phase"""
    return {
        "type": constants.READY_CONDITION,
        "status": "True" if phase == Phase.DEPLOYED else "False",
        "reason": _PHASE_REASONS[phase].value,
        "message": message,
        "observedGeneration": generation,
        TIMESTAMP_KEY: now_timestamp(),
    }


def make_bundle_status(
    bundle: Bundle,
    phase: Phase,
    message: str = "",
    group_statuses: Optional[List[GroupStatus]] = None,
) -> dict:
    """Create a full status object for a bundle

    Args:
        bundle:  Bundle
            The bundle whose status is being computed. Its current status
            supplies the previous conditions and observed generation.
        phase:  Phase
            The bundle phase
        message:  str
            Plain-text message explaining the phase
        group_statuses:  Optional[List[GroupStatus]]
            The per-group statuses of the current pass

    Returns:
        status:  dict
            Dict representation of the bundle status
    """
    previous = bundle.status
    status = {PHASE: phase.value}
    if message:
        status[MESSAGE] = message

    # The observed generation only advances on a full successful pass
    observed = previous.get(OBSERVED_GENERATION)
    if phase == Phase.DEPLOYED:
        observed = bundle.generation
    if observed:
        status[OBSERVED_GENERATION] = observed

    if group_statuses:
        status[GROUP_STATUSES] = [group.to_dict() for group in group_statuses]

    # A pass in progress leaves the outcome of the previous pass in place
    conditions = copy.deepcopy(previous.get(CONDITIONS, []))
    previous_reason = get_condition(constants.READY_CONDITION, previous).get("reason")
    if phase != Phase.DEPLOYING or previous_reason in (None, ReadyReason.PENDING.value):
        conditions = set_condition(
            conditions, make_ready_condition(phase, message, bundle.generation)
        )
    status[CONDITIONS] = conditions
    return status


def status_changed(current_status: dict, new_status: dict) -> bool:
    """Compare two status objects, ignoring condition timestamps"""
    diff = DeepDiff(
        current_status or {},
        new_status or {},
        exclude_regex_paths=[rf"root\['{CONDITIONS}'\]\[\d+\]\['{TIMESTAMP_KEY}'\]"],
    )
    log.debug3("Status diff: %s", diff)
    return bool(diff)


def update_bundle_status(
    deploy_manager: DeployManagerBase, bundle: Bundle, status: dict
) -> dict:
    """Write the status for a bundle if it changed, keeping the in-memory
    manifest in sync with what was written

    Raises:
        ResourceConflictError if the write fails
    """
    if not status_changed(bundle.status, status):
        log.debug2("Status for %s has not changed", bundle)
        return status
    log.debug2("Writing %s status for %s", status.get(PHASE), bundle)
    success, _ = deploy_manager.set_status(
        kind=bundle.kind,
        name=bundle.name,
        namespace=bundle.namespace,
        status=status,
        api_version=bundle.api_version,
    )
    assert_cluster(success, f"Failed to update status for {bundle}")
    bundle.manifest["status"] = status
    return status
