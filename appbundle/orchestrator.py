"""
The Orchestrator runs a single deployment pass over a bundle: every group in
order, every component of the group in order, each one applied and waited on
before the next one starts.

A pass always starts again from the first group. Components that are already
deployed are simply re-applied and found ready, so repeated passes converge
without any saved progress.
"""

# Standard
from typing import Optional, Tuple
import threading

# First Party
import alog

# Local
from .bundle import Bundle, Component, ComponentStatus, Group, GroupStatus, Phase
from .deploy_manager import DeployManagerBase
from .exceptions import (
    AppBundleError,
    ReadinessTimeoutError,
    ReconcileCancelledError,
    WorkloadFailedError,
)
from .ordering import compute_sync_wave, sort_components, sort_groups
from .package_variant import PackageVariantReconciler
from .readiness import wait_ready
from .resource_reconciler import ResourceReconciler
from .status import make_bundle_status, update_bundle_status

log = alog.use_channel("ORCH")

# Status messages
COMPONENT_DEPLOYED = "Resource deployed successfully"
PACKAGE_DEPLOYED = "PackageVariant deployed successfully"
GROUP_DEPLOYED = "All components deployed successfully"
BUNDLE_DEPLOYED = "All groups deployed successfully"


class Orchestrator:
    """Sequential dispatcher for the groups and components of a bundle"""

    def __init__(
        self,
        deploy_manager: DeployManagerBase,
        resource_reconciler: Optional[ResourceReconciler] = None,
        package_reconciler: Optional[PackageVariantReconciler] = None,
    ):
        self.deploy_manager = deploy_manager
        self.resource_reconciler = resource_reconciler or ResourceReconciler(
            deploy_manager
        )
        self.package_reconciler = package_reconciler or PackageVariantReconciler(
            deploy_manager
        )

    def run_pass(self, bundle: Bundle, stop_event: Optional[threading.Event] = None):
        """Run one full deployment pass and record the outcome in the
        bundle's status

        Args:
            bundle:  Bundle
                The bundle to deploy
            stop_event:  Optional[threading.Event]
                Cancels the pass at its next wait when set

        Returns:
            status:  dict
                The final status written for the bundle

        Raises:
            AppBundleError: the error of the first component that failed.
                The Failed status has already been written when it is raised.
        """
        update_bundle_status(
            self.deploy_manager, bundle, make_bundle_status(bundle, Phase.DEPLOYING)
        )

        group_statuses = []
        for group in sort_groups(bundle.groups):
            log.info("Deploying group %s of %s", group.name, bundle)
            with alog.ContextTimer(log.debug, "Finished group %s: ", group.name):
                group_status, error = self._deploy_group(bundle, group, stop_event)
            group_statuses.append(group_status)

            # Nothing after the first failure is attempted
            if error is not None:
                log.error("Group %s of %s failed: %s", group.name, bundle, error)
                update_bundle_status(
                    self.deploy_manager,
                    bundle,
                    make_bundle_status(
                        bundle,
                        Phase.FAILED,
                        message=group_status.message,
                        group_statuses=group_statuses,
                    ),
                )
                raise error

        log.info("All groups of %s deployed", bundle)
        return update_bundle_status(
            self.deploy_manager,
            bundle,
            make_bundle_status(
                bundle,
                Phase.DEPLOYED,
                message=BUNDLE_DEPLOYED,
                group_statuses=group_statuses,
            ),
        )

    ## Implementation Details ##################################################

    def _deploy_group(
        self, bundle: Bundle, group: Group, stop_event: Optional[threading.Event]
    ) -> Tuple[GroupStatus, Optional[AppBundleError]]:
        group_status = GroupStatus(name=group.name, phase=Phase.DEPLOYING)
        for component in sort_components(group.components):
            component_status, error = self._deploy_component(
                bundle, group, component, stop_event
            )
            group_status.component_statuses.append(component_status)
            if error is not None:
                group_status.phase = Phase.FAILED
                group_status.message = (
                    f"Failed to deploy component {component.name}: {error}"
                )
                return group_status, error
        group_status.phase = Phase.DEPLOYED
        group_status.message = GROUP_DEPLOYED
        return group_status, None

    def _deploy_component(
        self,
        bundle: Bundle,
        group: Group,
        component: Component,
        stop_event: Optional[threading.Event],
    ) -> Tuple[ComponentStatus, Optional[AppBundleError]]:
        """Deploy a single component and wait for it

        Returns:
            status:  ComponentStatus
                The component's status after the attempt
            error:  Optional[AppBundleError]
                The error that failed the component, if any
        """
        wave = compute_sync_wave(group, component)
        status = ComponentStatus(
            name=component.name, phase=Phase.DEPLOYING, sync_wave=wave
        )
        log.debug(
            "Deploying component %s/%s at wave %d", group.name, component.name, wave
        )
        try:
            if stop_event is not None and stop_event.is_set():
                raise ReconcileCancelledError(f"Cancelled before {component.name}")
            component.validate()

            if component.is_packaged:
                status.resource_ref = self.package_reconciler.reconcile_packaged(
                    bundle, group, component, wave, stop_event=stop_event
                )
                status.message = PACKAGE_DEPLOYED
            else:
                resource = self.resource_reconciler.apply(
                    bundle, group, component, wave
                )
                status.resource_ref = self.resource_reconciler.resource_ref(resource)
                try:
                    wait_ready(self.deploy_manager, resource, stop_event=stop_event)
                except (ReadinessTimeoutError, WorkloadFailedError) as err:
                    status.message = f"Resource not ready: {err}"
                    raise
                status.message = COMPONENT_DEPLOYED

        except AppBundleError as err:
            log.warning("Component %s/%s failed: %s", group.name, component.name, err)
            status.phase = Phase.FAILED
            status.message = status.message or str(err)
            return status, err

        status.phase = Phase.DEPLOYED
        return status, None
