"""
The PackageVariantReconciler deploys components that reference an
externally-managed package. It does so by managing a PackageVariant request
with the package orchestration service, which renders the package through a
mutation pipeline into a downstream repository.
"""

# Standard
from typing import List, Optional
import threading

# Third Party
import yaml

# First Party
import alog

# Local
from . import config, constants
from .bundle import Bundle, Component, Group, PackageRef, ResourceRef
from .deploy_manager import DeployManagerBase
from .exceptions import (
    AppBundleError,
    PackageIntegrationError,
    ReadinessTimeoutError,
    ReconcileCancelledError,
    assert_cluster,
    assert_package,
)
from .gate_script import build_gate_script
from .managed_object import ManagedObject
from .ordering import gate_sync_wave
from .readiness import wait_ready
from .resource_reconciler import tracking_labels
from .utils import nested_get, sanitize_name

log = alog.use_channel("PKGVR")

# Lifecycle value of a PackageRevision that has been published
PUBLISHED_LIFECYCLE = "Published"


## Naming ######################################################################


def package_variant_name(bundle: Bundle, group: Group, component: Component) -> str:
    """The PackageVariant name is stable for a component so that every pass
    finds the request created by the first one
    """
    return sanitize_name(f"{bundle.name}-{group.name}-{component.name}")


def gate_name(variant_name: str) -> str:
    return sanitize_name(f"{variant_name}-gate")


## Spec ########################################################################


def build_package_variant(  # pylint: disable=too-many-arguments
    bundle: Bundle,
    group: Group,
    component: Component,
    package_ref: PackageRef,
    wave: int,
) -> dict:
    """Build the full PackageVariant request for a packaged component

    Args:
        bundle:  Bundle
            The owning bundle
        group:  Group
            The group holding the component
        component:  Component
            The packaged component
        package_ref:  PackageRef
            The component's package reference with defaults resolved
        wave:  int
            The component's sync wave

    Returns:
        package_variant:  dict
            The PackageVariant resource
    """
    name = package_variant_name(bundle, group, component)
    labels = tracking_labels(bundle, group, component)
    gate_source = build_gate_script(
        namespace=package_ref.target_namespace,
        gate_name=gate_name(name),
        gate_wave=gate_sync_wave(group),
        labels=labels,
    )
    mutators = [
        {
            "image": config.mutators.set_annotations_image,
            "configMap": {constants.SYNC_WAVE_ANNOTATION: str(wave)},
        },
        {
            "image": config.mutators.set_labels_image,
            "configMap": dict(labels),
        },
        {
            "image": config.mutators.starlark_image,
            "configMap": {"source": gate_source},
        },
    ]
    return {
        "apiVersion": constants.PACKAGE_VARIANT_API_VERSION,
        "kind": constants.PACKAGE_VARIANT_KIND,
        "metadata": {
            "name": name,
            "namespace": package_ref.namespace,
            "labels": dict(labels),
            "annotations": {constants.SYNC_WAVE_ANNOTATION: str(wave)},
        },
        "spec": {
            "upstream": {
                "repo": package_ref.repository,
                "package": package_ref.package,
                "revision": package_ref.revision,
            },
            "downstream": {
                "repo": bundle.package_integration.downstream_repository,
                "package": name,
            },
            "adoptionPolicy": config.package_variant.adoption_policy,
            "deletionPolicy": config.package_variant.deletion_policy,
            "packageContext": {"data": {"namespace": package_ref.target_namespace}},
            "pipeline": {"mutators": mutators},
        },
    }


def parse_package_resources(
    resources: dict, default_namespace: Optional[str]
) -> List[ManagedObject]:
    """Parse the file map of a PackageRevisionResources into the deployable
    resources worth waiting on. The package file, infrastructure kinds and
    resources handled as sync hooks are left out.

    Args:
        resources:  dict
            Map from file name to file content
        default_namespace:  Optional[str]
            Namespace for resources that do not set one

    Returns:
        objects:  List[ManagedObject]
            The resources, in file name order
    """
    out = []
    for file_name in sorted(resources or {}):
        if file_name.split("/")[-1] == constants.KPTFILE_NAME:
            continue
        try:
            docs = list(yaml.safe_load_all(resources[file_name]))
        except yaml.YAMLError as err:
            log.warning("Skipping unparsable package file %s: %s", file_name, err)
            continue
        for doc in docs:
            if not isinstance(doc, dict) or not doc.get("kind"):
                continue
            kind = doc["kind"]
            if kind == constants.KPTFILE_NAME or kind in constants.INFRASTRUCTURE_KINDS:
                log.debug3("Not waiting on %s from %s", kind, file_name)
                continue
            if not doc.get("apiVersion") or not (doc.get("metadata") or {}).get("name"):
                continue
            obj = ManagedObject(doc)
            if constants.HOOK_ANNOTATION in obj.annotations:
                log.debug3("Not waiting on hook %s", obj)
                continue
            if not obj.namespace:
                obj.namespace = default_namespace
            out.append(obj)
    return out


## Reconciler ##################################################################


class PackageVariantReconciler:
    """Create the PackageVariant request for a component, wait for the
    orchestration service to fulfill it, and then wait on what it produced
    """

    def __init__(self, deploy_manager: DeployManagerBase):
        self.deploy_manager = deploy_manager

    def preflight(self, bundle: Bundle) -> bool:
        """Check that the downstream repository is registered. A missing
        repository is only logged, since the request itself will report it.

        Returns:
            found:  bool
                Whether the downstream repository was found
        """
        repository = bundle.package_integration.downstream_repository
        log.info("Package integration enabled for %s (repository: %s)", bundle, repository)
        success, content = self.deploy_manager.get_object_current_state(
            kind=constants.REPOSITORY_KIND,
            name=repository,
            namespace=bundle.namespace,
            api_version=constants.REPOSITORY_API_VERSION,
        )
        if not success:
            log.warning("Unable to look up downstream repository %s", repository)
            return False
        if content is None:
            log.warning(
                "Downstream repository %s is not registered in %s",
                repository,
                bundle.namespace,
            )
            return False
        return True

    @alog.logged_function(log.debug2)
    def reconcile_packaged(  # pylint: disable=too-many-arguments
        self,
        bundle: Bundle,
        group: Group,
        component: Component,
        wave: int,
        stop_event: Optional[threading.Event] = None,
    ) -> ResourceRef:
        """Deploy a packaged component

        Args:
            bundle:  Bundle
                The owning bundle
            group:  Group
                The group holding the component
            component:  Component
                The packaged component
            wave:  int
                The component's sync wave
            stop_event:  Optional[threading.Event]
                Cancels any active wait when set

        Returns:
            resource_ref:  ResourceRef
                Reference to the PackageVariant

        Raises:
            PackageIntegrationError: the request could not be created or
                never became ready
            ResourceConflictError: the request could not be read
            ReconcileCancelledError: stop_event was set while waiting
        """
        assert_package(
            bundle.package_integration.enabled,
            f"Component {component.name} references a package but package integration is not enabled",
        )
        package_ref = component.package_ref.resolved(bundle.namespace)
        desired = build_package_variant(bundle, group, component, package_ref, wave)
        variant = ManagedObject(desired)

        self._create_or_update(variant)

        log.info("Waiting for PackageVariant to be ready: %s", variant)
        try:
            wait_ready(
                self.deploy_manager,
                variant,
                stop_event=stop_event,
                predicate=lambda obj: obj.has_true_condition(constants.READY_CONDITION),
            )
        except ReadinessTimeoutError as err:
            raise PackageIntegrationError(f"PackageVariant not ready: {err}") from err

        self._wait_produced_resources(variant, package_ref, stop_event)

        return ResourceRef(
            api_version=variant.api_version,
            kind=variant.kind,
            name=variant.name,
            namespace=variant.namespace,
        )

    def delete_variant(self, bundle: Bundle, group: Group, component: Component) -> bool:
        """Delete the PackageVariant for a component. The service deletes the
        downstream package with it.

        Returns:
            success:  bool
                Whether the delete went through (not-found counts)
        """
        package_ref = component.package_ref.resolved(bundle.namespace)
        name = package_variant_name(bundle, group, component)
        log.info("Deleting PackageVariant %s/%s", package_ref.namespace, name)
        success, _ = self.deploy_manager.disable(
            [
                {
                    "apiVersion": constants.PACKAGE_VARIANT_API_VERSION,
                    "kind": constants.PACKAGE_VARIANT_KIND,
                    "metadata": {"name": name, "namespace": package_ref.namespace},
                }
            ]
        )
        return success

    ## Implementation Details ##################################################

    def _create_or_update(self, variant: ManagedObject):
        """The request is created once. Later passes try to bring it up to
        date, but a failed update is skipped since the service also writes to
        the request.
        """
        success, current = self.deploy_manager.get_object_current_state(
            kind=variant.kind,
            name=variant.name,
            namespace=variant.namespace,
            api_version=variant.api_version,
        )
        assert_cluster(success, "Failed to get PackageVariant")

        if current is None:
            log.info("Creating PackageVariant %s", variant)
            success, _ = self.deploy_manager.create(variant.definition)
            assert_package(success, "Failed to create PackageVariant")
            return

        current = ManagedObject(current)
        if (
            current.get("spec") == variant.get("spec")
            and current.labels == variant.labels
            and current.annotations == variant.annotations
        ):
            log.debug("PackageVariant %s is up to date", variant)
            return

        log.info("Updating PackageVariant %s", variant)
        update = ManagedObject(
            {
                **variant.definition,
                "metadata": {**current.metadata, **variant.metadata},
            }
        )
        update.resource_version = current.resource_version
        success, _ = self.deploy_manager.replace(update.definition)
        if not success:
            log.warning("Skipping update of PackageVariant %s", variant)

    def _wait_produced_resources(
        self,
        variant: ManagedObject,
        package_ref: PackageRef,
        stop_event: Optional[threading.Event],
    ):
        """Wait on the workloads the request produced. Failures here are
        logged only since the request is already ready.
        """
        try:
            resources = self._discover_resources(variant, package_ref)
        except AppBundleError as err:
            log.warning("Failed to discover resources of %s: %s", variant, err)
            return

        for resource in resources:
            log.info("Waiting for package resource to be ready: %s", resource)
            try:
                wait_ready(self.deploy_manager, resource, stop_event=stop_event)
            except ReconcileCancelledError:
                raise
            except AppBundleError as err:
                log.warning("Package resource %s not ready: %s", resource, err)

    def _discover_resources(
        self, variant: ManagedObject, package_ref: PackageRef
    ) -> List[ManagedObject]:
        """Find the downstream PackageRevision of a request and read its
        resources
        """
        revision_name = self._find_revision_name(variant)
        if revision_name is None:
            log.debug("No downstream revision found for %s", variant)
            return []

        success, content = self.deploy_manager.get_object_current_state(
            kind=constants.PACKAGE_REVISION_RESOURCES_KIND,
            name=revision_name,
            namespace=variant.namespace,
            api_version=constants.PACKAGE_REVISION_API_VERSION,
        )
        assert_cluster(success, f"Failed to read resources of {revision_name}")
        if content is None:
            log.debug("No resources found for revision %s", revision_name)
            return []
        resources = parse_package_resources(
            ManagedObject(content).nested_get("spec.resources", {}),
            package_ref.target_namespace,
        )
        log.debug2("Discovered %d resources in %s", len(resources), revision_name)
        return resources

    def _find_revision_name(self, variant: ManagedObject) -> Optional[str]:
        """Read the downstream target of the request, or fall back to the
        PackageRevision records of the downstream package
        """
        success, current = self.deploy_manager.get_object_current_state(
            kind=variant.kind,
            name=variant.name,
            namespace=variant.namespace,
            api_version=variant.api_version,
        )
        assert_cluster(success, f"Failed to get {variant}")
        if current is not None:
            for target in ManagedObject(current).nested_list("status.downstreamTargets"):
                if isinstance(target, dict) and target.get("name"):
                    return target["name"]

        # List items of aggregated APIs may omit kind and apiVersion, so the
        # records are read as plain dicts
        downstream = variant.nested_get("spec.downstream", {})
        success, revisions = self.deploy_manager.filter_objects_current_state(
            kind=constants.PACKAGE_REVISION_KIND,
            namespace=variant.namespace,
            api_version=constants.PACKAGE_REVISION_API_VERSION,
        )
        assert_cluster(success, "Failed to list package revisions")
        matches = [
            revision
            for revision in revisions
            if nested_get(revision, "spec.repository") == downstream.get("repo")
            and nested_get(revision, "spec.packageName") == downstream.get("package")
            and nested_get(revision, "metadata.name")
        ]
        if not matches:
            return None
        published = [
            revision
            for revision in matches
            if nested_get(revision, "spec.lifecycle") == PUBLISHED_LIFECYCLE
        ]
        return nested_get((published or matches)[-1], "metadata.name")
