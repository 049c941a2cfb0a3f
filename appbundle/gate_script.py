"""
Builders for the wait gate that is injected into every packaged component.

The gate is a Job (with its ServiceAccount, ClusterRole and
ClusterRoleBinding) that runs `kubectl rollout status` against every workload
the package produced. It carries the sync hook annotation and a wave between
the group's last component wave and the next group's first wave, so the sync
engine holds there until the group's workloads are healthy.

The resource set of a package is only known when the package is rendered, so
the gate is delivered as a Starlark script that runs in the mutation pipeline.
Everything here is a pure text/dict builder so the output can be asserted on
without running the interpreter.
"""

# Standard
from typing import Dict, Iterable, List, Optional, Tuple

# First Party
import alog

# Local
from . import config, constants

log = alog.use_channel("GATE")

## Workloads ###################################################################

# (kubectl resource, name, namespace)
Workload = Tuple[str, str, str]


def classify_workloads(resources: Iterable[dict], default_namespace: str) -> List[Workload]:
    """Pick out the workload kinds the gate can wait on

    Args:
        resources:  Iterable[dict]
            Resource dicts produced by a package
        default_namespace:  str
            Namespace used for resources that do not set one

    Returns:
        workloads:  List[Workload]
            (kubectl resource, name, namespace) for each workload, in input
            order
    """
    workloads = []
    for resource in resources:
        kubectl_kind = constants.GATE_WORKLOAD_KINDS.get(resource.get("kind"))
        if kubectl_kind is None:
            continue
        metadata = resource.get("metadata") or {}
        workloads.append(
            (
                kubectl_kind,
                metadata.get("name"),
                metadata.get("namespace") or default_namespace,
            )
        )
    log.debug2("Classified %d workloads", len(workloads))
    return workloads


def build_wait_command(
    workloads: List[Workload],
    rollout_timeout: Optional[str] = None,
    fallback_delay: Optional[int] = None,
) -> str:
    """Build the shell command the gate Job runs. With no workloads the gate
    still runs and sleeps for a fixed delay.
    """
    rollout_timeout = rollout_timeout or config.gate.rollout_timeout
    if not workloads:
        if fallback_delay is None:
            fallback_delay = config.gate.fallback_delay_seconds
        return f"sleep {fallback_delay}"
    return " && ".join(
        f"kubectl rollout status {kind}/{name} -n {namespace} --timeout={rollout_timeout}"
        for kind, name, namespace in workloads
    )


## Resources ###################################################################


def gate_names(gate_name: str, namespace: str) -> Dict[str, str]:
    """Names for the gate resources. The cluster-scoped RBAC objects include
    the namespace so gates in different namespaces do not collide.
    """
    return {
        "job": gate_name,
        "service_account": gate_name,
        "cluster_role": f"{namespace}-{gate_name}",
        "cluster_role_binding": f"{namespace}-{gate_name}",
    }


def build_gate_resources(  # pylint: disable=too-many-arguments
    namespace: str,
    gate_name: str,
    gate_wave: int,
    labels: Dict[str, str],
    wait_command: str,
) -> List[dict]:
    """Build the ServiceAccount, ClusterRole, ClusterRoleBinding and Job
    making up a gate

    Returns:
        resources:  List[dict]
            The gate resources in apply order, Job last
    """
    names = gate_names(gate_name, namespace)
    wave = str(gate_wave)

    def _metadata(name, hook=False, namespaced=True):
        annotations = {constants.SYNC_WAVE_ANNOTATION: wave}
        if hook:
            annotations[constants.HOOK_ANNOTATION] = constants.GATE_HOOK
            annotations[
                constants.HOOK_DELETE_POLICY_ANNOTATION
            ] = constants.GATE_HOOK_DELETE_POLICY
        metadata = {
            "name": name,
            "labels": dict(labels),
            "annotations": annotations,
        }
        if namespaced:
            metadata["namespace"] = namespace
        return metadata

    service_account = {
        "apiVersion": "v1",
        "kind": "ServiceAccount",
        "metadata": _metadata(names["service_account"]),
    }
    cluster_role = {
        "apiVersion": "rbac.authorization.k8s.io/v1",
        "kind": "ClusterRole",
        "metadata": _metadata(names["cluster_role"], namespaced=False),
        "rules": [
            {
                "apiGroups": ["apps"],
                "resources": [
                    "deployments",
                    "statefulsets",
                    "daemonsets",
                    "replicasets",
                ],
                "verbs": ["get", "list", "watch"],
            },
            {
                "apiGroups": [""],
                "resources": ["pods"],
                "verbs": ["get", "list", "watch"],
            },
        ],
    }
    cluster_role_binding = {
        "apiVersion": "rbac.authorization.k8s.io/v1",
        "kind": "ClusterRoleBinding",
        "metadata": _metadata(names["cluster_role_binding"], namespaced=False),
        "roleRef": {
            "apiGroup": "rbac.authorization.k8s.io",
            "kind": "ClusterRole",
            "name": names["cluster_role"],
        },
        "subjects": [
            {
                "kind": "ServiceAccount",
                "name": names["service_account"],
                "namespace": namespace,
            }
        ],
    }
    job = {
        "apiVersion": "batch/v1",
        "kind": "Job",
        "metadata": _metadata(names["job"], hook=True),
        "spec": {
            "backoffLimit": 0,
            "template": {
                "metadata": {"labels": dict(labels)},
                "spec": {
                    "serviceAccountName": names["service_account"],
                    "restartPolicy": "Never",
                    "containers": [
                        {
                            "name": "wait",
                            "image": config.gate.kubectl_image,
                            "command": ["/bin/sh", "-c"],
                            "args": [wait_command],
                        }
                    ],
                },
            },
        },
    }
    return [service_account, cluster_role, cluster_role_binding, job]


## Script ######################################################################

# Stands in for the runtime command inside the generated resource literals
_COMMAND_MARKER = "__GATE_WAIT_COMMAND__"

_SCRIPT_TEMPLATE = '''\
# Generated wait gate for {gate_name}
WORKLOAD_KINDS = {workload_kinds}
GATE_NAMESPACE = {namespace}
ROLLOUT_TIMEOUT = {rollout_timeout}
FALLBACK_COMMAND = {fallback_command}
GATE_KEYS = {gate_keys}

def wait_command(items):
    commands = []
    for item in items:
        kind = WORKLOAD_KINDS.get(item.get("kind"))
        if kind == None:
            continue
        metadata = item.get("metadata", {{}})
        namespace = metadata.get("namespace", GATE_NAMESPACE)
        commands.append(
            "kubectl rollout status %s/%s -n %s --timeout=%s"
            % (kind, metadata["name"], namespace, ROLLOUT_TIMEOUT)
        )
    if not commands:
        return FALLBACK_COMMAND
    return " && ".join(commands)

def is_gate(item):
    return (item.get("kind"), item.get("metadata", {{}}).get("name")) in GATE_KEYS

def gate_resources(command):
    return {resources}

def run(items):
    items = [item for item in items if not is_gate(item)]
    return items + gate_resources(wait_command(items))

ctx.resource_list["items"] = run(ctx.resource_list["items"])
'''


def build_gate_script(
    namespace: str, gate_name: str, gate_wave: int, labels: Dict[str, str]
) -> str:
    """Build the Starlark source for the gate mutator

    At run time the script classifies the workloads in the package's resource
    list the same way classify_workloads does, builds the same command as
    build_wait_command, and appends the output of build_gate_resources.
    Gate resources from a previous render are replaced rather than
    duplicated.

    Args:
        namespace:  str
            Namespace for the gate and default namespace for workloads
        gate_name:  str
            Name of the gate Job and ServiceAccount
        gate_wave:  int
            Sync wave for the gate resources
        labels:  Dict[str, str]
            Tracking labels for the gate resources

    Returns:
        source:  str
            The script text
    """
    resources = build_gate_resources(
        namespace=namespace,
        gate_name=gate_name,
        gate_wave=gate_wave,
        labels=labels,
        wait_command=_COMMAND_MARKER,
    )
    gate_keys = [
        (resource["kind"], resource["metadata"]["name"]) for resource in resources
    ]

    # Dict, list, str and int literals share the same syntax in Starlark
    resources_literal = repr(resources).replace(repr(_COMMAND_MARKER), "command")
    return _SCRIPT_TEMPLATE.format(
        gate_name=gate_name,
        workload_kinds=repr(dict(constants.GATE_WORKLOAD_KINDS)),
        namespace=repr(namespace),
        rollout_timeout=repr(config.gate.rollout_timeout),
        fallback_command=repr(build_wait_command([])),
        gate_keys=repr(gate_keys),
        resources=resources_literal,
    )
