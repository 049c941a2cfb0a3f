"""
This defines the base class for all DeployManager types.
"""

# Standard
from typing import List, Optional, Tuple
import abc


class DeployManagerBase(abc.ABC):
    """
    Base class for deploy managers which are responsible for the generic get,
    list, create, replace, and delete operations against the cluster. Every
    kind, known or unknown, is handled through the same operations.

    Operations report failure through their success flag rather than raising,
    so that callers decide whether a failure is terminal.
    """

    @abc.abstractmethod
    def get_object_current_state(
        self,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, Optional[dict]]:
        """Fetch the current state of a given object by name

        Args:
            kind:  str
                The kind of the object to fetch
            name:  str
                The full name of the object to fetch
            namespace:  Optional[str]
                The namespace to search for the object or None for
                cluster-scoped objects
            api_version:  Optional[str]
                The api_version of the resource kind to fetch

        Returns:
            success:  bool
                Whether or not the state fetch operation succeeded. A missing
                object is a success.
            current_state:  dict or None
                The dict representation of the current object's configuration,
                or None if not present
        """

    @abc.abstractmethod
    def filter_objects_current_state(
        self,
        kind: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
        label_selector: Optional[str] = None,
    ) -> Tuple[bool, List[dict]]:
        """Fetch a list of objects of the given kind, optionally matching an
        equality-based label selector

        Returns:
            success:  bool
                Whether or not the list operation succeeded
            current_state:  List[dict]
                A list of dict representations of the matched objects
        """

    @abc.abstractmethod
    def create(self, resource_definition: dict) -> Tuple[bool, Optional[dict]]:
        """Create a new object. Fails if the object already exists.

        Returns:
            success:  bool
                Whether or not the create succeeded
            current_state:  dict or None
                The object as stored by the cluster
        """

    @abc.abstractmethod
    def replace(self, resource_definition: dict) -> Tuple[bool, Optional[dict]]:
        """Fully replace an existing object. If the definition carries a
        resourceVersion, it must match the stored one.

        Returns:
            success:  bool
                Whether or not the replace succeeded
            current_state:  dict or None
                The object as stored by the cluster
        """

    @abc.abstractmethod
    def disable(self, resource_definitions: List[dict]) -> Tuple[bool, bool]:
        """Delete the given objects from the cluster. Objects that are already
        absent are a success without change.

        Returns:
            success:  bool
                Whether or not all deletes succeeded
            changed:  bool
                Whether or not any object was deleted
        """

    @abc.abstractmethod
    def set_status(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        name: str,
        namespace: Optional[str],
        status: dict,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, bool]:
        """Replace the status sub-resource of an object

        Returns:
            success:  bool
                Whether or not the status write succeeded
            changed:  bool
                Whether or not the status write resulted in a change
        """
