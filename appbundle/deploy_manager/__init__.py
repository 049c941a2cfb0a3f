"""
The DeployManager is the abstraction in charge of interacting with the
kubernetes cluster to look up, create, replace, and delete resources.
"""

# Local
from .base import DeployManagerBase
from .dry_run_deploy_manager import DryRunDeployManager
from .openshift_deploy_manager import OpenshiftDeployManager
