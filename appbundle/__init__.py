"""
Package exports
"""

# Local
from . import config, constants, status
from .bundle import Bundle, Component, Group, PackageRef, Phase
from .controller import BundleController, ReconciliationResult, RequeueParams
from .deploy_manager import DeployManagerBase, DryRunDeployManager, OpenshiftDeployManager
from .exceptions import assert_cluster, assert_manifest, assert_package
from .finalizer import BundleFinalizer
from .managed_object import ManagedObject
from .orchestrator import Orchestrator
from .package_variant import PackageVariantReconciler
from .readiness import is_ready, wait_ready
from .resource_reconciler import ResourceReconciler
