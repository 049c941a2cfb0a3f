"""
The BundleController manages an individual reconcile of a bundle. It sets up
logging for the pass, handles the finalizer token and deletion, and then runs
the deployment pass.
"""

# Standard
from dataclasses import dataclass, field
from typing import Optional
import base64
import datetime
import logging
import threading
import uuid

# First Party
import alog

# Local
from . import config, constants
from .bundle import Bundle, Phase
from .deploy_manager import DeployManagerBase, OpenshiftDeployManager
from .exceptions import AppBundleError, ReconcileCancelledError, assert_cluster
from .finalizer import BundleFinalizer, add_finalizer, has_finalizer, remove_finalizer
from .log_format import BundleJsonFormatter
from .orchestrator import Orchestrator
from .package_variant import PackageVariantReconciler
from .status import get_phase, make_bundle_status, update_bundle_status

log = alog.use_channel("CTRLR")


## Data models #################################################################


@dataclass
class RequeueParams:
    """RequeueParams holds parameters for requeue request"""

    requeue_after: datetime.timedelta = field(
        default_factory=lambda: datetime.timedelta(
            seconds=float(config.requeue_after_seconds)
        )
    )


@dataclass
class ReconciliationResult:
    """ReconciliationResult is the result of a reconciliation pass. The engine
    never retries on its own, so a failed pass asks its caller to requeue.
    """

    # Flag to control requeue of current reconcile request
    requeue: bool
    # Parameters for requeue request
    requeue_params: RequeueParams = field(default_factory=RequeueParams)
    # The error that ended the pass, if any
    exception: Optional[Exception] = None


## BundleController ############################################################


class BundleController:
    """Entry point for reconciling AppBundle resources. Separate bundles may
    be reconciled concurrently on separate threads with a shared controller.
    """

    def __init__(
        self,
        deploy_manager: Optional[DeployManagerBase] = None,
        stop_event: Optional[threading.Event] = None,
    ):
        """
        Args:
            deploy_manager:  Optional[DeployManagerBase]
                Deploy manager to use. Defaults to the live cluster.
            stop_event:  Optional[threading.Event]
                Event that cancels every active wait when set, e.g. on
                shutdown
        """
        self.deploy_manager = deploy_manager or OpenshiftDeployManager()
        self.stop_event = stop_event or threading.Event()
        self.package_reconciler = PackageVariantReconciler(self.deploy_manager)
        self.orchestrator = Orchestrator(
            self.deploy_manager, package_reconciler=self.package_reconciler
        )
        self.finalizer = BundleFinalizer(
            self.deploy_manager, package_reconciler=self.package_reconciler
        )

    def stop(self):
        """Cancel all in-progress waits"""
        log.info("Stopping bundle controller")
        self.stop_event.set()

    def reconcile(self, resource: dict) -> ReconciliationResult:
        """Run one reconciliation of a bundle. The general path is:

            1. Fetch the live bundle. A bundle that is gone is ignored.
            2. Configure logging for the pass
            3. If the bundle is being deleted, run cleanup and release the
               finalizer token
            4. Record the finalizer token and the initial Pending status
            5. Check the package integration when enabled
            6. Run the deployment pass

        Args:
            resource:  dict
                The bundle as delivered by the watch. Only its identity is
                used; the live state is fetched again.

        Returns:
            reconcile_result:  ReconciliationResult
                The result of the reconcile

        Raises:
            AppBundleError: the pass failed. The bundle status already
                records the failure.
        """
        metadata = resource.get("metadata") or {}
        manifest = self._fetch_bundle(
            name=metadata.get("name"),
            namespace=metadata.get("namespace"),
            api_version=resource.get("apiVersion", constants.BUNDLE_API_VERSION),
        )
        if manifest is None:
            log.info(
                "Bundle %s/%s not found. Ignoring since it must be deleted",
                metadata.get("namespace"),
                metadata.get("name"),
            )
            return ReconciliationResult(requeue=False)

        self.configure_logging(manifest, self.generate_id())
        bundle = Bundle.from_manifest(manifest)

        if bundle.is_deleting:
            if has_finalizer(bundle):
                self.finalizer.finalize(bundle)
                remove_finalizer(self.deploy_manager, bundle)
            return ReconciliationResult(requeue=False)

        add_finalizer(self.deploy_manager, bundle)

        if get_phase(bundle.status) is None:
            update_bundle_status(
                self.deploy_manager, bundle, make_bundle_status(bundle, Phase.PENDING)
            )

        if bundle.package_integration.enabled:
            self.package_reconciler.preflight(bundle)

        with alog.ContextTimer(log.info, "Reconciled %s: ", bundle):
            self.orchestrator.run_pass(bundle, stop_event=self.stop_event)
        return ReconciliationResult(requeue=False)

    def safe_reconcile(self, resource: dict) -> ReconciliationResult:
        """
        This function calls out to reconcile but catches any errors thrown.
        This function guarantees a safe result for callers that only act on
        the requeue flag.

        Args:
            resource:  dict
                The bundle as delivered by the watch

        Returns:
            reconcile_result:  ReconciliationResult
                The result of the reconcile
        """
        try:
            return self.reconcile(resource)

        except ReconcileCancelledError as exc:
            log.info("Reconcile cancelled: %s", exc)
            return ReconciliationResult(requeue=False, exception=exc)

        except AppBundleError as exc:
            log.warning(
                "Pass failed with %s error: %s",
                "fatal" if exc.is_fatal_error else "expected",
                exc,
            )
            error = exc

        # Capture all generic exceptions
        except Exception as exc:  # pylint: disable=broad-except
            log.warning("Handling caught error in reconcile: %s", exc, exc_info=True)
            error = exc

        log.info("Requeuing bundle due to error during reconcile")
        return ReconciliationResult(
            requeue=True, requeue_params=RequeueParams(), exception=error
        )

    ## Reconciliation Stages ###################################################

    @classmethod
    def configure_logging(cls, manifest: dict, reconciliation_id: str):
        """Configure the logging for a given reconcile. Annotations on the
        bundle override the library config.

        Args:
            manifest:  dict
                The bundle to get annotation overrides from
            reconciliation_id:  str
                The unique id for the reconciliation
        """
        annotations = (manifest.get("metadata") or {}).get("annotations") or {}
        default_level = annotations.get(
            constants.LOG_DEFAULT_LEVEL_NAME, config.log_level
        )
        filters = annotations.get(constants.LOG_FILTERS_NAME, config.log_filters)
        log_json = annotations.get(constants.LOG_JSON_NAME, str(config.log_json))
        log_thread_id = annotations.get(
            constants.LOG_THREAD_ID_NAME, str(config.log_thread_id)
        )

        # Convert boolean args
        log_json = (log_json or "").lower() == "true"
        log_thread_id = (log_thread_id or "").lower() == "true"

        # Keep the existing handler so output keeps going where it was going
        handler_generator = None
        if logging.root.handlers:
            old_handler = logging.root.handlers[0]

            def handler_generator():
                return old_handler

        alog.configure(
            default_level=default_level,
            filters=filters,
            formatter=BundleJsonFormatter(manifest, reconciliation_id)
            if log_json
            else "pretty",
            thread_id=log_thread_id,
            handler_generator=handler_generator,
        )

    @classmethod
    def generate_id(cls) -> str:
        """Generates a unique human readable id for this reconciliation

        Returns:
            id: str
                A unique base32 encoded id
        """
        uuid4 = uuid.uuid4()
        base32_str = base64.b32encode(uuid4.bytes).decode("utf-8")
        reconcile_id = base32_str[:22]
        log.debug("Generated reconcile id: %s", reconcile_id)
        return reconcile_id

    def _fetch_bundle(self, name: str, namespace: str, api_version: str) -> Optional[dict]:
        success, manifest = self.deploy_manager.get_object_current_state(
            kind=constants.BUNDLE_KIND,
            name=name,
            namespace=namespace,
            api_version=api_version,
        )
        assert_cluster(success, f"Failed to get bundle {namespace}/{name}")
        return manifest
