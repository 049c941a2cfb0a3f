"""
Helper object to represent an arbitrary kubernetes resource without modeling
its kind as a static type
"""

# Standard
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union
import copy

# Third Party
import dateutil.parser
import yaml

# First Party
import alog

# Local
from . import constants
from .exceptions import ManifestParseError, assert_manifest
from .utils import nested_get, nested_set

log = alog.use_channel("MGOBJ")


class ManagedObject:
    """Generic wrapper around the dict representation of a kubernetes resource
    with typed accessors for the fields the engine reads and writes. The
    wrapped dict is mutated in place by the setters.
    """

    def __init__(self, definition: dict):
        self.definition = definition
        self.definition.setdefault("metadata", {})
        assert_manifest(self.kind is not None, "No kind found")
        assert_manifest(self.api_version is not None, "No apiVersion found")

    @classmethod
    def from_template(cls, template: Union[dict, str, bytes, None]) -> "ManagedObject":
        """Parse a component template into a ManagedObject. The template may
        already be structured or may be JSON/YAML text. The template itself is
        never mutated.

        Raises:
            ManifestParseError if the template does not describe a resource
        """
        if isinstance(template, (str, bytes)):
            try:
                template = yaml.safe_load(template)
            except yaml.YAMLError as err:
                log.debug2("Template is not valid YAML: %s", err)
                raise ManifestParseError(f"Failed to parse template: {err}") from err
        assert_manifest(
            isinstance(template, dict),
            f"Failed to parse template: expected a mapping, got {type(template).__name__}",
        )
        metadata = template.get("metadata")
        assert_manifest(
            isinstance(metadata, dict) or metadata is None,
            "Failed to parse template: metadata is not a mapping",
        )
        for field, value in [
            ("apiVersion", template.get("apiVersion")),
            ("kind", template.get("kind")),
            ("metadata.name", (metadata or {}).get("name")),
        ]:
            assert_manifest(
                isinstance(value, str) and value,
                f"Failed to parse template: missing {field}",
            )
        return cls(copy.deepcopy(template))

    ## Identity ################################################################

    @property
    def kind(self) -> Optional[str]:
        return self.definition.get("kind")

    @property
    def api_version(self) -> Optional[str]:
        return self.definition.get("apiVersion")

    @property
    def metadata(self) -> dict:
        return self.definition["metadata"]

    @property
    def name(self) -> Optional[str]:
        return self.metadata.get("name")

    @property
    def namespace(self) -> Optional[str]:
        """The namespace or None for cluster-scoped (or unset) resources"""
        return self.metadata.get("namespace") or None

    @namespace.setter
    def namespace(self, namespace: str):
        self.metadata["namespace"] = namespace

    @property
    def uid(self) -> Optional[str]:
        return self.metadata.get("uid")

    @property
    def resource_version(self) -> Optional[str]:
        return self.metadata.get("resourceVersion")

    @resource_version.setter
    def resource_version(self, resource_version: Optional[str]):
        if resource_version is None:
            self.metadata.pop("resourceVersion", None)
        else:
            self.metadata["resourceVersion"] = resource_version

    @property
    def generation(self) -> int:
        return self.metadata.get("generation") or 0

    ## Annotations and Labels ##################################################

    @property
    def annotations(self) -> Dict[str, str]:
        return self.metadata.get("annotations") or {}

    @property
    def labels(self) -> Dict[str, str]:
        return self.metadata.get("labels") or {}

    def set_annotation(self, key: str, value: Any):
        """Set an annotation, stringifying the value"""
        if not isinstance(self.metadata.get("annotations"), dict):
            self.metadata["annotations"] = {}
        self.metadata["annotations"][key] = str(value)

    def set_label(self, key: str, value: Any):
        """Set a label, stringifying the value"""
        if not isinstance(self.metadata.get("labels"), dict):
            self.metadata["labels"] = {}
        self.metadata["labels"][key] = str(value)

    @property
    def sync_wave(self) -> Optional[int]:
        wave = self.annotations.get(constants.SYNC_WAVE_ANNOTATION)
        return int(wave) if wave is not None else None

    ## Ownership and Finalizers ################################################

    @property
    def owner_references(self) -> List[dict]:
        return self.metadata.get("ownerReferences") or []

    @property
    def finalizers(self) -> List[str]:
        return self.metadata.get("finalizers") or []

    @property
    def deletion_timestamp(self) -> Optional[str]:
        return self.metadata.get("deletionTimestamp")

    ## Nested Lookups ##########################################################

    def nested_get(self, key: str, dflt: Any = None) -> Any:
        """Look up a value using 'foo.bar' notation"""
        return nested_get(self.definition, key, dflt)

    def nested_set(self, key: str, val: Any):
        """Set a value using 'foo.bar' notation"""
        nested_set(self.definition, key, val)

    def nested_int(self, key: str, dflt: int = 0) -> int:
        """Look up an integer value, using dflt when it is absent

        Raises:
            TypeError if the value is present and not an integer
        """
        val = self.nested_get(key)
        if val is None:
            return dflt
        if isinstance(val, bool) or not isinstance(val, int):
            raise TypeError(f"{key} is of type {type(val).__name__}, not int")
        return val

    def nested_str(self, key: str, dflt: Optional[str] = None) -> Optional[str]:
        """Look up a string value, using dflt when it is absent"""
        val = self.nested_get(key)
        if val is None:
            return dflt
        if not isinstance(val, str):
            raise TypeError(f"{key} is of type {type(val).__name__}, not str")
        return val

    def nested_list(self, key: str) -> list:
        """Look up a list value, returning an empty list when it is absent"""
        val = self.nested_get(key)
        if val is None:
            return []
        if not isinstance(val, list):
            raise TypeError(f"{key} is of type {type(val).__name__}, not list")
        return val

    def get_condition(self, type_val: str) -> Optional[dict]:
        """Get the status condition of the given type if present. If the type
        shows up more than once, the one with the latest transition time wins.
        """
        conditions = [
            cond
            for cond in self.nested_list("status.conditions")
            if isinstance(cond, dict) and cond.get("type") == type_val
        ]
        if not conditions:
            return None
        return max(conditions, key=_condition_time)

    def has_true_condition(self, type_val: str) -> bool:
        """Check whether the condition of the given type has status True"""
        cond = self.get_condition(type_val)
        return cond is not None and str(cond.get("status")).lower() == "true"

    ## Dunder ##################################################################

    def get(self, *args, **kwargs):
        """Pass get calls to the objects definition"""
        return self.definition.get(*args, **kwargs)

    def __str__(self):
        if self.namespace:
            return f"{self.api_version}/{self.kind}/{self.namespace}/{self.name}"
        return f"{self.api_version}/{self.kind}/{self.name}"

    def __repr__(self):
        return str(self)


def _condition_time(condition: dict) -> datetime:
    timestamp = condition.get("lastTransitionTime")
    if isinstance(timestamp, str):
        try:
            parsed = dateutil.parser.isoparse(timestamp)
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
        except ValueError:
            log.debug2("Unparsable condition timestamp: %s", timestamp)
    return datetime.fromtimestamp(0, tz=timezone.utc)
