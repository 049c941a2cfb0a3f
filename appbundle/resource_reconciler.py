"""
The ResourceReconciler applies the literal template of a single component to
the cluster
"""

# Standard
from typing import Optional

# First Party
import alog

# Local
from . import constants
from .bundle import Bundle, Component, Group, ResourceRef
from .deploy_manager import DeployManagerBase
from .deploy_manager.owner_references import set_controller_reference
from .exceptions import assert_cluster
from .managed_object import ManagedObject

log = alog.use_channel("RECON")


def tracking_labels(bundle: Bundle, group: Group, component: Component) -> dict:
    """The labels that tie a produced resource back to its bundle"""
    return {
        constants.BUNDLE_LABEL: bundle.name,
        constants.GROUP_LABEL: group.name,
        constants.COMPONENT_LABEL: component.name,
    }


def render_component(
    bundle: Bundle, group: Group, component: Component, wave: Optional[int] = None
) -> ManagedObject:
    """Parse a component's template and inject everything the engine adds
    before applying it: the sync wave, the tracking labels and, for
    namespaced kinds, the default namespace. The owner reference is left to
    the caller.

    Raises:
        ManifestParseError if the template does not parse
    """
    resource = ManagedObject.from_template(component.template)
    if wave is not None:
        resource.set_annotation(constants.SYNC_WAVE_ANNOTATION, wave)
    for key, val in tracking_labels(bundle, group, component).items():
        resource.set_label(key, val)
    if (
        not resource.namespace
        and resource.kind not in constants.CLUSTER_SCOPED_KINDS
    ):
        resource.namespace = bundle.namespace
    return resource


class ResourceReconciler:
    """Create or fully replace the resource described by a component"""

    def __init__(self, deploy_manager: DeployManagerBase):
        self.deploy_manager = deploy_manager

    @alog.logged_function(log.debug2)
    def apply(
        self, bundle: Bundle, group: Group, component: Component, wave: int
    ) -> ManagedObject:
        """Apply a component's template

        Args:
            bundle:  Bundle
                The owning bundle
            group:  Group
                The group holding the component
            component:  Component
                The component to apply
            wave:  int
                The component's sync wave

        Returns:
            resource:  ManagedObject
                The resource as it was submitted

        Raises:
            ManifestParseError: the template does not parse
            ResourceConflictError: a cluster operation failed
        """
        resource = render_component(bundle, group, component, wave)
        set_controller_reference(bundle.manifest, resource)

        success, current = self.deploy_manager.get_object_current_state(
            kind=resource.kind,
            name=resource.name,
            namespace=resource.namespace,
            api_version=resource.api_version,
        )
        assert_cluster(success, "Failed to get existing resource")

        if current is None:
            log.info("Creating %s", resource)
            resource.resource_version = None
            success, _ = self.deploy_manager.create(resource.definition)
            assert_cluster(success, "Failed to create resource")
        else:
            log.info("Updating %s", resource)
            resource.resource_version = ManagedObject(current).resource_version
            success, _ = self.deploy_manager.replace(resource.definition)
            assert_cluster(success, "Failed to update resource")
        return resource

    @staticmethod
    def resource_ref(resource: ManagedObject) -> ResourceRef:
        return ResourceRef(
            api_version=resource.api_version,
            kind=resource.kind,
            name=resource.name,
            namespace=resource.namespace,
        )
