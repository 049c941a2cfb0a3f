"""
The finalizer protocol for bundles. The finalizer token holds a deleted
bundle in place until every resource it produced that the platform will not
collect on its own has been removed.
"""

# Standard
from typing import Optional
import copy

# First Party
import alog

# Local
from . import constants
from .bundle import Bundle, Component, Group
from .deploy_manager import DeployManagerBase
from .exceptions import AppBundleError, assert_cluster
from .managed_object import ManagedObject
from .ordering import ordered_components
from .package_variant import PackageVariantReconciler
from .resource_reconciler import render_component

log = alog.use_channel("FINLZ")

## Finalizer Token #############################################################


def has_finalizer(bundle: Bundle) -> bool:
    return constants.BUNDLE_FINALIZER in bundle.finalizers


def add_finalizer(deploy_manager: DeployManagerBase, bundle: Bundle) -> bool:
    """Record the finalizer token on the bundle if it is not there yet

    Returns:
        changed:  bool
            Whether the bundle was updated
    """
    if has_finalizer(bundle):
        return False
    log.debug("Adding finalizer to %s", bundle)
    return _write_finalizers(
        deploy_manager, bundle, bundle.finalizers + [constants.BUNDLE_FINALIZER]
    )


def remove_finalizer(deploy_manager: DeployManagerBase, bundle: Bundle) -> bool:
    """Remove the finalizer token, which lets the platform delete the bundle

    Returns:
        changed:  bool
            Whether the bundle was updated
    """
    if not has_finalizer(bundle):
        return False
    log.debug("Removing finalizer from %s", bundle)
    return _write_finalizers(
        deploy_manager,
        bundle,
        [token for token in bundle.finalizers if token != constants.BUNDLE_FINALIZER],
    )


def _write_finalizers(
    deploy_manager: DeployManagerBase, bundle: Bundle, finalizers: list
) -> bool:
    manifest = copy.deepcopy(bundle.manifest)
    manifest.setdefault("metadata", {})["finalizers"] = finalizers
    success, content = deploy_manager.replace(manifest)
    assert_cluster(success, f"Failed to update finalizers of {bundle}")

    # Keep the latest resourceVersion for the writes that follow
    bundle.manifest["metadata"] = (content or manifest)["metadata"]
    return True


## Cleanup #####################################################################


class BundleFinalizer:
    """Reverse-order cleanup of the resources produced by a bundle"""

    def __init__(
        self,
        deploy_manager: DeployManagerBase,
        package_reconciler: Optional[PackageVariantReconciler] = None,
    ):
        self.deploy_manager = deploy_manager
        self.package_reconciler = package_reconciler or PackageVariantReconciler(
            deploy_manager
        )

    def finalize(self, bundle: Bundle) -> int:
        """Walk the components in reverse order and remove what each one
        produced. Cleanup is best-effort: a failure on one component is logged
        and the walk continues.

        Args:
            bundle:  Bundle
                The bundle being deleted

        Returns:
            failures:  int
                The number of components whose cleanup failed
        """
        log.info("Finalizing %s", bundle)
        failures = 0
        with alog.ContextTimer(log.debug, "Finalized %s: ", bundle):
            for group, component in ordered_components(bundle.groups, reverse=True):
                try:
                    if not self._cleanup_component(bundle, group, component):
                        failures += 1
                except AppBundleError as err:
                    log.error(
                        "Failed to clean up component %s/%s: %s",
                        group.name,
                        component.name,
                        err,
                    )
                    failures += 1
        log.info("Finalization of %s complete with %d failures", bundle, failures)
        return failures

    def _cleanup_component(
        self, bundle: Bundle, group: Group, component: Component
    ) -> bool:
        component.validate()
        if component.is_packaged:
            return self.package_reconciler.delete_variant(bundle, group, component)

        resource = render_component(bundle, group, component)

        # Resources carrying the bundle's owner reference go with the bundle
        success, current = self.deploy_manager.get_object_current_state(
            kind=resource.kind,
            name=resource.name,
            namespace=resource.namespace,
            api_version=resource.api_version,
        )
        assert_cluster(success, f"Failed to get {resource}")
        if current is None:
            log.debug2("Nothing to delete for %s", resource)
            return True
        if bundle.uid and any(
            ref.get("uid") == bundle.uid
            for ref in ManagedObject(current).owner_references
        ):
            log.debug("Leaving %s to garbage collection", resource)
            return True

        log.info("Deleting %s", resource)
        success, _ = self.deploy_manager.disable([resource.definition])
        if not success:
            log.error("Failed to delete %s", resource)
        return success
