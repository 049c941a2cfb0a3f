"""
The DryRunDeployManager implements the DeployManager interface but does not
actually interact with the cluster and instead holds the state of the cluster in
a local map.
"""

# Standard
from datetime import datetime
from threading import RLock
from typing import List, Optional, Tuple
import copy
import itertools
import uuid

# First Party
import alog

# Local
from .base import DeployManagerBase

log = alog.use_channel("DRY-RUN")

# Lock to ensure disable/deploys are thread safe
DRY_RUN_CLUSTER_LOCK = RLock()


class DryRunDeployManager(DeployManagerBase):
    """
    Deploy manager which doesn't actually deploy!

    Beyond storing objects, it emulates the cluster behaviors the engine
    relies on: resourceVersion conflicts on replace, finalizers deferring
    deletion, and cascading deletion of objects whose ownerReferences point to
    a deleted owner.
    """

    def __init__(self, resources=None, strict_resource_version=True):
        """Construct with an optional set of objects that are already in the
        cluster
        """
        self._cluster_content = {}
        self.strict_resource_version = strict_resource_version
        self._version_counter = itertools.count(1)
        for resource in resources or []:
            resource = copy.deepcopy(resource)
            resource.setdefault("metadata", {}).setdefault("uid", str(uuid.uuid4()))
            self._store(resource)

    ## Interface ###############################################################

    def get_object_current_state(self, kind, name, namespace=None, api_version=None):
        log.debug(
            "DRY RUN get_object_current_state of [%s/%s] in [%s]", kind, name, namespace
        )
        with DRY_RUN_CLUSTER_LOCK:
            matches = [
                entries[name]
                for api_ver, entries in self._kind_entries(namespace, kind).items()
                if name in entries and (api_version is None or api_ver == api_version)
            ]
        log.debug2(
            "Found %d matches for [%s/%s] in %s", len(matches), kind, name, namespace
        )
        if len(matches) == 1:
            return True, copy.deepcopy(matches[0])
        return True, None

    def filter_objects_current_state(
        self, kind, namespace=None, api_version=None, label_selector=None
    ):
        log.debug(
            "DRY RUN filter_objects_current_state of [%s] in [%s]", kind, namespace
        )
        expected_labels = _parse_selector(label_selector)
        matches = []
        with DRY_RUN_CLUSTER_LOCK:
            namespaces = (
                [namespace] if namespace is not None else list(self._cluster_content)
            )
            for nspace in namespaces:
                for api_ver, entries in self._kind_entries(nspace, kind).items():
                    if api_version is not None and api_ver != api_version:
                        continue
                    for resource in entries.values():
                        labels = resource.get("metadata", {}).get("labels") or {}
                        if all(
                            labels.get(key) == val
                            for key, val in expected_labels.items()
                        ):
                            matches.append(copy.deepcopy(resource))
        return True, matches

    def create(self, resource_definition: dict) -> Tuple[bool, Optional[dict]]:
        log.info("DRY RUN create")
        api_version, kind, name, namespace = _identifiers(resource_definition)
        with DRY_RUN_CLUSTER_LOCK:
            if name in self._kind_entries(namespace, kind).get(api_version, {}):
                log.warning(
                    "Unable to create [%s/%s/%s]: already exists", kind, namespace, name
                )
                return False, None
            resource = copy.deepcopy(resource_definition)
            metadata = resource.setdefault("metadata", {})
            metadata.pop("resourceVersion", None)
            metadata["uid"] = str(uuid.uuid4())
            metadata["creationTimestamp"] = datetime.now().isoformat()
            metadata.setdefault("generation", 1)
            return True, copy.deepcopy(self._store(resource))

    def replace(self, resource_definition: dict) -> Tuple[bool, Optional[dict]]:
        log.info("DRY RUN replace")
        api_version, kind, name, namespace = _identifiers(resource_definition)
        with DRY_RUN_CLUSTER_LOCK:
            current = self._kind_entries(namespace, kind).get(api_version, {}).get(name)
            if current is None:
                log.warning(
                    "Unable to replace [%s/%s/%s]: not found", kind, namespace, name
                )
                return False, None

            resource = copy.deepcopy(resource_definition)
            metadata = resource.setdefault("metadata", {})
            desired_version = metadata.get("resourceVersion")
            current_version = current["metadata"].get("resourceVersion")
            if (
                self.strict_resource_version
                and desired_version
                and desired_version != current_version
            ):
                log.warning(
                    "Unable to replace [%s/%s/%s]: resourceVersion %s is out of date (%s)",
                    kind,
                    namespace,
                    name,
                    desired_version,
                    current_version,
                )
                return False, None

            # Server-owned fields survive a replace
            for key in ["uid", "creationTimestamp", "deletionTimestamp"]:
                if key in current["metadata"]:
                    metadata[key] = current["metadata"][key]
            if resource.get("spec") != current.get("spec"):
                metadata["generation"] = current["metadata"].get("generation", 1) + 1
            else:
                metadata["generation"] = current["metadata"].get("generation", 1)
            # Status is only written through set_status
            if "status" in current:
                resource["status"] = current["status"]
            else:
                resource.pop("status", None)

            stored = self._store(resource)

            # An object marked for deletion goes away once its finalizers clear
            if metadata.get("deletionTimestamp") and not metadata.get("finalizers"):
                self._delete(namespace, kind, api_version, name)
            return True, copy.deepcopy(stored)

    def disable(self, resource_definitions: List[dict]) -> Tuple[bool, bool]:
        log.info("DRY RUN disable")
        changed = False
        with DRY_RUN_CLUSTER_LOCK:
            for resource in resource_definitions:
                api_version, kind, name, namespace = _identifiers(resource)
                entries = self._kind_entries(namespace, kind)
                matched = [
                    api_ver
                    for api_ver, objs in entries.items()
                    if name in objs and (api_version is None or api_ver == api_version)
                ]
                for api_ver in matched:
                    changed = True
                    current = entries[api_ver][name]
                    if current["metadata"].get("finalizers"):
                        log.debug2("Marking [%s/%s] for deletion", kind, name)
                        current["metadata"].setdefault(
                            "deletionTimestamp",
                            datetime.now().strftime("%Y-%m-%dT%H:%M:%SZ"),
                        )
                    else:
                        self._delete(namespace, kind, api_ver, name)
        return True, changed

    def set_status(
        self,
        kind,
        name,
        namespace,
        status,
        api_version=None,
    ):  # pylint: disable=too-many-arguments
        log.info(
            "DRY RUN set_status of [%s.%s/%s] in %s",
            api_version,
            kind,
            name,
            namespace,
        )
        with DRY_RUN_CLUSTER_LOCK:
            for api_ver, entries in self._kind_entries(namespace, kind).items():
                if name in entries and (api_version is None or api_ver == api_version):
                    current = entries[name]
                    prev_status = current.get("status")
                    current["status"] = copy.deepcopy(status)
                    self._bump_version(current)
                    return True, prev_status != status
        log.debug("Did not find [%s/%s] in %s", kind, name, namespace)
        return False, False

    ## Dry Run Methods #########################################################

    def all_objects(self) -> List[dict]:
        """Get a flat list of every object in the dry-run cluster"""
        with DRY_RUN_CLUSTER_LOCK:
            return [
                copy.deepcopy(obj)
                for kinds in self._cluster_content.values()
                for api_versions in kinds.values()
                for entries in api_versions.values()
                for obj in entries.values()
            ]

    ## Implementation Details ##################################################

    def _kind_entries(self, namespace, kind) -> dict:
        return self._cluster_content.get(namespace or None, {}).get(kind, {})

    def _bump_version(self, resource: dict):
        resource.setdefault("metadata", {})["resourceVersion"] = str(
            next(self._version_counter)
        )

    def _store(self, resource: dict) -> dict:
        api_version, kind, name, namespace = _identifiers(resource)
        self._bump_version(resource)
        self._cluster_content.setdefault(namespace, {}).setdefault(
            kind, {}
        ).setdefault(api_version, {})[name] = resource
        return resource

    def _delete(self, namespace, kind, api_version, name):
        removed = self._cluster_content[namespace][kind][api_version].pop(name)
        if not self._cluster_content[namespace][kind][api_version]:
            del self._cluster_content[namespace][kind][api_version]
        if not self._cluster_content[namespace][kind]:
            del self._cluster_content[namespace][kind]
        if not self._cluster_content[namespace]:
            del self._cluster_content[namespace]
        self._collect_garbage(removed["metadata"].get("uid"))

    def _collect_garbage(self, owner_uid: Optional[str]):
        """Cascade a deletion to every object owned by the given uid"""
        if owner_uid is None:
            return
        dependents = [
            obj
            for obj in self.all_objects()
            if any(
                ref.get("uid") == owner_uid
                for ref in obj["metadata"].get("ownerReferences") or []
            )
        ]
        for obj in dependents:
            log.debug2(
                "Collecting [%s/%s] owned by %s",
                obj["kind"],
                obj["metadata"]["name"],
                owner_uid,
            )
            self.disable([obj])


def _identifiers(resource: dict) -> tuple:
    metadata = resource.get("metadata") or {}
    return (
        resource.get("apiVersion"),
        resource.get("kind"),
        metadata.get("name"),
        metadata.get("namespace") or None,
    )


def _parse_selector(label_selector: Optional[str]) -> dict:
    """Parse an equality-based label selector (a=b,c==d) into a dict"""
    expected = {}
    for selector in (label_selector or "").split(","):
        selector = selector.strip()
        if not selector:
            continue
        key, _, val = selector.replace("==", "=").partition("=")
        expected[key.strip()] = val.strip()
    return expected
