"""
This DeployManager is responsible for delegating cluster operations to the
openshift library. It is the one that will be used when the engine is running
in the cluster or outside the cluster making live changes.
"""
# Standard
from collections import namedtuple
from typing import Callable, List, Optional, Tuple
import threading

# Third Party
from openshift.dynamic import DynamicClient
from openshift.dynamic.exceptions import (
    ConflictError,
    DynamicApiError,
    ForbiddenError,
    NotFoundError,
    ResourceNotFoundError,
    ResourceNotUniqueError,
)
from openshift.dynamic.resource import Resource
import kubernetes

# First Party
import alog

# Local
from .base import DeployManagerBase

log = alog.use_channel("OSFTD")

FIELD_MANAGER = "appbundle-operator"

## Deploy Manager ##############################################################


class OpenshiftDeployManager(DeployManagerBase):
    """This DeployManager uses the openshift DynamicClient to interact with the
    cluster
    """

    def __init__(self, client: Optional[DynamicClient] = None):
        """
        Args:
            client:  Optional[DynamicClient]
                A preconfigured client. If not given, one is lazily created from
                in-cluster config or the local kubeconfig.
        """
        log.debug("Initializing openshift client")
        self._client = client

        # Status writes for separate bundles may run on separate threads
        self._status_lock = threading.Lock()

    @property
    def client(self):
        """Lazy property access to the client"""
        if self._client is None:
            self._client = self._setup_client()
        return self._client

    def get_object_current_state(
        self,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, Optional[dict]]:
        resources = self._get_resource_handle(kind, api_version)
        if not resources:
            return True, None

        try:
            resource = resources.get(name=name, namespace=namespace)
        except NotFoundError:
            log.debug(
                "No object named [%s/%s] found in namespace [%s]", kind, name, namespace
            )
            return True, None
        except ForbiddenError:
            log.debug(
                "Fetching objects of kind [%s] forbidden in namespace [%s]",
                kind,
                namespace,
            )
            return False, None
        except DynamicApiError as err:
            log.warning("Failed to fetch [%s/%s] in [%s]: %s", kind, name, namespace, err)
            return False, None

        return True, resource.to_dict()

    def filter_objects_current_state(
        self,
        kind: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
        label_selector: Optional[str] = None,
    ) -> Tuple[bool, List[dict]]:
        resources = self._get_resource_handle(kind, api_version)
        if not resources:
            return True, []

        try:
            list_obj = resources.get(label_selector=label_selector, namespace=namespace)
        except NotFoundError:
            log.debug(
                "No objects of kind [%s] found in namespace [%s]", kind, namespace
            )
            return True, []
        except ForbiddenError:
            log.debug(
                "Listing objects of kind [%s] forbidden in namespace [%s]",
                kind,
                namespace,
            )
            return False, []
        except DynamicApiError as err:
            log.warning("Failed to list [%s] in [%s]: %s", kind, namespace, err)
            return False, []

        return True, list_obj.to_dict().get("items", [])

    @alog.logged_function(log.debug2)
    def create(self, resource_definition: dict) -> Tuple[bool, Optional[dict]]:
        return self._run_operation(self._create, resource_definition)

    @alog.logged_function(log.debug2)
    def replace(self, resource_definition: dict) -> Tuple[bool, Optional[dict]]:
        return self._run_operation(self._replace, resource_definition)

    @alog.logged_function(log.debug2)
    def disable(self, resource_definitions: List[dict]) -> Tuple[bool, bool]:
        success = True
        changed = False
        for resource_definition in resource_definitions:
            op_success, op_changed = self._run_operation(
                self._disable, resource_definition
            )
            success = success and op_success
            changed = changed or bool(op_changed)
        return success, changed

    def set_status(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        name: str,
        namespace: Optional[str],
        status: dict,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, bool]:
        resource_definition = {
            "kind": kind,
            "apiVersion": api_version,
            "metadata": {"name": name, "namespace": namespace},
        }
        return self._run_operation(
            self._set_status, resource_definition, status=status
        )

    ## Implementation Helpers ##################################################

    @staticmethod
    def _setup_client():
        """Create a DynamicClient that will work based on where the engine is
        running
        """
        try:
            log.debug2("Running with in-cluster config")
            kube_config = kubernetes.client.Configuration()
            kubernetes.config.load_incluster_config(client_configuration=kube_config)
            api_client = kubernetes.client.ApiClient(kube_config)
            return DynamicClient(api_client)

        except kubernetes.config.ConfigException:
            log.debug2("Running with out-of-cluster config")
            return DynamicClient(kubernetes.config.new_client_from_config())

    def _get_resource_handle(self, kind: str, api_version: str) -> Optional[Resource]:
        """Get the openshift resource handle for a specified kind and api_version"""
        resources = None
        try:
            resources = self.client.resources.get(kind=kind, api_version=api_version)
        except (ResourceNotFoundError, ResourceNotUniqueError):
            log.debug(
                "No objects of kind [%s] found or multiple objects matching request found",
                kind,
            )
        return resources

    # Internal struct to hold the key resource identifier elements
    _ResourceIdentifiers = namedtuple(
        "ResourceIdentifiers", ["api_version", "kind", "name", "namespace"]
    )

    @classmethod
    def _get_resource_identifiers(cls, resource_definition):
        """Helper for getting the required parts of a single resource definition"""
        api_version = resource_definition.get("apiVersion")
        kind = resource_definition.get("kind")
        name = resource_definition.get("metadata", {}).get("name")
        namespace = resource_definition.get("metadata", {}).get("namespace") or None
        assert None not in [
            kind,
            name,
        ], "Cannot operate on resource without kind or name"
        return cls._ResourceIdentifiers(api_version, kind, name, namespace)

    def _run_operation(
        self, operation: Callable, resource_definition: dict, **kwargs
    ) -> tuple:
        """Shared wrapper that turns client exceptions into a failed result"""
        try:
            return True, operation(resource_definition=resource_definition, **kwargs)
        except ConflictError as err:
            log.warning(
                "Conflict running [%s] on %s: %s",
                operation.__name__,
                self._get_resource_identifiers(resource_definition),
                err,
            )
        except Exception as err:  # pylint: disable=broad-except
            log.warning(
                "Operation [%s] failed to execute: %s",
                operation.__name__,
                err,
                exc_info=True,
            )
        return False, None

    def _require_handle(self, res_id) -> Resource:
        resource_handle = self._get_resource_handle(res_id.kind, res_id.api_version)
        assert (
            resource_handle is not None
        ), f"Failed to fetch resource handle for {res_id.api_version}/{res_id.kind}"
        return resource_handle

    ################
    ## Operations ##
    ################

    def _create(self, resource_definition: dict) -> dict:
        res_id = self._get_resource_identifiers(resource_definition)
        resource_handle = self._require_handle(res_id)
        log.debug2(
            "Attempting to create [%s/%s/%s] in %s",
            res_id.api_version,
            res_id.kind,
            res_id.name,
            res_id.namespace,
        )
        return resource_handle.create(
            body=resource_definition,
            namespace=res_id.namespace,
            field_manager=FIELD_MANAGER,
        ).to_dict()

    def _replace(self, resource_definition: dict) -> dict:
        res_id = self._get_resource_identifiers(resource_definition)
        resource_handle = self._require_handle(res_id)

        # Let the server set managedFields
        resource_definition["metadata"].pop("managedFields", None)

        log.debug2(
            "Attempting to put [%s/%s/%s] in %s",
            res_id.api_version,
            res_id.kind,
            res_id.name,
            res_id.namespace,
        )
        return resource_handle.replace(
            body=resource_definition,
            name=res_id.name,
            namespace=res_id.namespace,
            field_manager=FIELD_MANAGER,
        ).to_dict()

    def _disable(self, resource_definition: dict) -> bool:
        """Delete a single resource if it exists

        Returns:
            changed:  bool
                Whether or not the resource was deleted
        """
        res_id = self._get_resource_identifiers(resource_definition)
        try:
            resource_handle = self.client.resources.get(
                api_version=res_id.api_version, kind=res_id.kind
            )
            log.debug2(
                "Attempting to delete [%s/%s/%s] from %s",
                res_id.api_version,
                res_id.kind,
                res_id.name,
                res_id.namespace,
            )
            resource_handle.delete(name=res_id.name, namespace=res_id.namespace)
            return True

        # If the kind or instance is not found, that's a success without change
        except (ResourceNotFoundError, NotFoundError) as err:
            log.debug2(
                "Valid error caught when disabling [%s/%s]: %s",
                res_id.kind,
                res_id.name,
                err,
            )
        return False

    def _set_status(self, resource_definition: dict, status: dict) -> bool:
        """Replace the status of a single resource

        Returns:
            changed:  bool
                Whether or not the status update resulted in a change
        """
        res_id = self._get_resource_identifiers(resource_definition)
        resource_handle = self._require_handle(res_id)

        with self._status_lock:
            resource = resource_handle.get(
                name=res_id.name, namespace=res_id.namespace
            ).to_dict()
            if resource.get("status") == status:
                log.debug("Status has not changed. No update")
                return False

            resource["status"] = status
            resource_handle.status.replace(body=resource)
            log.debug2(
                "Successfully set the status for [%s/%s] in %s",
                res_id.kind,
                res_id.name,
                res_id.namespace,
            )
            return True
