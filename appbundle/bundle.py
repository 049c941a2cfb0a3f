"""
This module holds the data model for the AppBundle custom resource: the
declarative spec of ordered groups and components, and the status tree the
engine writes back.
"""

# Standard
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Union

# First Party
import alog

# Local
from . import config, constants
from .exceptions import ManifestParseError, assert_manifest

log = alog.use_channel("BUNDL")


## Enums #######################################################################


class Phase(Enum):
    """Deployment phase shared by the bundle, its groups, and its components"""

    PENDING = "Pending"
    DEPLOYING = "Deploying"
    DEPLOYED = "Deployed"
    FAILED = "Failed"


## Spec ########################################################################


@dataclass
class PackageRef:
    """Reference to an externally-managed package"""

    package: str
    repository: Optional[str] = None
    revision: Optional[str] = None
    namespace: Optional[str] = None
    target_namespace: Optional[str] = None

    @classmethod
    def from_dict(cls, raw: dict) -> "PackageRef":
        assert_manifest(isinstance(raw, dict), "packageRef must be a mapping")
        package = raw.get("package") or raw.get("name")
        assert_manifest(
            isinstance(package, str) and package, "packageRef.package is required"
        )
        return cls(
            package=package,
            repository=raw.get("repository") or None,
            revision=raw.get("revision") or None,
            namespace=raw.get("namespace") or None,
            target_namespace=raw.get("targetNamespace") or None,
        )

    def resolved(self, bundle_namespace: str) -> "PackageRef":
        """Get a copy with every optional field defaulted"""
        return PackageRef(
            package=self.package,
            repository=self.repository or self.package,
            revision=self.revision or config.package_variant.default_revision,
            namespace=self.namespace or bundle_namespace,
            target_namespace=self.target_namespace or bundle_namespace,
        )


@dataclass
class Component:
    """A single deployable unit: a literal template or a package reference.
    Exactly one of the two must be set, and the package reference must be
    complete. Both are checked when the component is reconciled rather than
    when it is parsed, so a bad component fails on its own.
    """

    name: str
    order: int = 0
    template: Optional[Union[dict, str]] = None
    package_ref: Optional[PackageRef] = None
    package_ref_error: Optional[str] = None

    @classmethod
    def from_dict(cls, raw: dict) -> "Component":
        raw_ref = raw.get("packageRef") or raw.get("porchPackageRef")
        package_ref, package_ref_error = None, None
        if raw_ref:
            try:
                package_ref = PackageRef.from_dict(raw_ref)
            except ManifestParseError as err:
                log.debug2("Invalid packageRef on component %s: %s", raw.get("name"), err)
                package_ref_error = str(err)
        return cls(
            name=raw.get("name"),
            order=int(raw.get("order") or 0),
            template=raw.get("template"),
            package_ref=package_ref,
            package_ref_error=package_ref_error,
        )

    @property
    def is_packaged(self) -> bool:
        return self.package_ref is not None or self.package_ref_error is not None

    def validate(self):
        """Make sure exactly one of template and package_ref is set and that a
        package reference parsed cleanly

        Raises:
            ManifestParseError
        """
        has_template = self.template not in (None, "", {})
        assert_manifest(
            has_template or self.is_packaged,
            f"Component {self.name} has neither a template nor a packageRef",
        )
        assert_manifest(
            not (has_template and self.is_packaged),
            f"Component {self.name} has both a template and a packageRef",
        )
        assert_manifest(
            self.package_ref_error is None,
            f"Component {self.name} has an invalid packageRef: {self.package_ref_error}",
        )


@dataclass
class Group:
    """An ordered collection of components deployed as a unit"""

    name: str
    order: int = 0
    components: List[Component] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw: dict) -> "Group":
        return cls(
            name=raw.get("name"),
            order=int(raw.get("order") or 0),
            components=[Component.from_dict(comp) for comp in raw.get("components") or []],
        )


@dataclass
class PackageIntegration:
    """Toggle and downstream repository for package-variant components"""

    enabled: bool = False
    repository: Optional[str] = None

    @classmethod
    def from_dict(cls, raw: Optional[dict]) -> "PackageIntegration":
        raw = raw or {}
        return cls(
            enabled=bool(raw.get("enabled", False)),
            repository=raw.get("repository") or None,
        )

    @property
    def downstream_repository(self) -> str:
        return self.repository or config.package_variant.default_downstream_repository


## Status ######################################################################


@dataclass
class ResourceRef:
    """Reference to the resource a component produced"""

    api_version: str
    kind: str
    name: str
    namespace: Optional[str] = None

    def to_dict(self) -> dict:
        out = {"apiVersion": self.api_version, "kind": self.kind, "name": self.name}
        if self.namespace:
            out["namespace"] = self.namespace
        return out


@dataclass
class ComponentStatus:
    name: str
    phase: Phase = Phase.PENDING
    message: str = ""
    sync_wave: Optional[int] = None
    resource_ref: Optional[ResourceRef] = None

    def to_dict(self) -> dict:
        out = {"name": self.name, "phase": self.phase.value}
        if self.message:
            out["message"] = self.message
        if self.sync_wave is not None:
            out["syncWave"] = self.sync_wave
        if self.resource_ref is not None:
            out["resourceRef"] = self.resource_ref.to_dict()
        return out


@dataclass
class GroupStatus:
    name: str
    phase: Phase = Phase.PENDING
    message: str = ""
    component_statuses: List[ComponentStatus] = field(default_factory=list)

    def to_dict(self) -> dict:
        out = {"name": self.name, "phase": self.phase.value}
        if self.message:
            out["message"] = self.message
        if self.component_statuses:
            out["componentStatuses"] = [
                comp.to_dict() for comp in self.component_statuses
            ]
        return out


## Bundle ######################################################################


@dataclass
class Bundle:
    """The root entity. The manifest is kept so that ownership and status
    writes can refer back to the live object.
    """

    name: str
    namespace: str
    groups: List[Group]
    package_integration: PackageIntegration
    manifest: dict
    uid: Optional[str] = None
    generation: int = 0

    @classmethod
    def from_manifest(cls, manifest: Any) -> "Bundle":
        """Build a Bundle from the CR manifest

        Args:
            manifest:  dict
                The full dict representation of the AppBundle CR

        Returns:
            bundle:  Bundle
                The parsed bundle
        """
        metadata = manifest.get("metadata") or {}
        spec = manifest.get("spec") or {}
        return cls(
            name=metadata.get("name"),
            namespace=metadata.get("namespace"),
            uid=metadata.get("uid"),
            generation=metadata.get("generation") or 0,
            groups=[Group.from_dict(group) for group in spec.get("groups") or []],
            package_integration=PackageIntegration.from_dict(
                spec.get("packageIntegration") or spec.get("porchIntegration")
            ),
            manifest=manifest,
        )

    @property
    def api_version(self) -> str:
        return self.manifest.get("apiVersion", constants.BUNDLE_API_VERSION)

    @property
    def kind(self) -> str:
        return self.manifest.get("kind", constants.BUNDLE_KIND)

    @property
    def finalizers(self) -> List[str]:
        return (self.manifest.get("metadata") or {}).get("finalizers") or []

    @property
    def is_deleting(self) -> bool:
        return bool((self.manifest.get("metadata") or {}).get("deletionTimestamp"))

    @property
    def status(self) -> dict:
        return self.manifest.get("status") or {}

    def __str__(self):
        return f"{self.kind}/{self.namespace}/{self.name}"
