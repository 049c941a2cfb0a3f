"""
This module holds the owner-reference policy applied to resources produced by
a bundle
"""

# Standard
from typing import Optional

# First Party
import alog

# Local
from ..managed_object import ManagedObject

log = alog.use_channel("OWNRF")


def set_controller_reference(owner_cr: dict, child: ManagedObject) -> bool:
    """Add a controller-owned reference to the owner CR onto the child, but
    only when the child resolves to the owner's namespace. Kubernetes forbids
    cross-namespace ownership and cluster-scoped children have no namespace to
    match, so those are left without a reference and must be deleted
    explicitly during finalization.

    Args:
        owner_cr:  dict
            The full manifest of the owning bundle
        child:  ManagedObject
            The resource about to be applied. Modified in place.

    Returns:
        owned:  bool
            True if the child now carries the controller reference
    """
    owner_meta = owner_cr.get("metadata") or {}
    owner_namespace = owner_meta.get("namespace")
    owner_uid = owner_meta.get("uid")

    if not child.namespace or child.namespace != owner_namespace:
        log.info(
            "Skipping owner reference for cross-namespace or cluster-scoped resource %s (owner namespace: %s)",
            child,
            owner_namespace,
        )
        return False

    if owner_uid is None:
        log.debug("Owner has no uid yet. Not adding owner ref to %s", child)
        return False

    # Only one controller may own an object
    existing = _find_controller(child)
    if existing is not None and existing.get("uid") != owner_uid:
        log.warning(
            "Failed to set owner reference on %s: already controlled by %s/%s. Continuing without it",
            child,
            existing.get("kind"),
            existing.get("name"),
        )
        return False

    owner_refs = [
        ref for ref in child.owner_references if ref.get("uid") != owner_uid
    ]
    owner_refs.append(make_owner_reference(owner_cr))
    log.debug4("Final owner refs for %s: %s", child, owner_refs)
    child.metadata["ownerReferences"] = owner_refs
    return True


def make_owner_reference(owner_cr: dict) -> dict:
    """Make a controller owner reference for the given CR instance

    Error Semantics: This function makes a best-effort and does not validate the
    content of the owner_cr, so the resulting ownerReference may contain None
    entries.
    """
    metadata = owner_cr.get("metadata", {})
    return {
        "apiVersion": owner_cr.get("apiVersion"),
        "kind": owner_cr.get("kind"),
        "name": metadata.get("name"),
        "uid": metadata.get("uid"),
        "controller": True,
        # The parent will not be deleted until this object completes its
        # deletion
        "blockOwnerDeletion": True,
    }


def _find_controller(child: ManagedObject) -> Optional[dict]:
    for ref in child.owner_references:
        if ref.get("controller"):
            return ref
    return None
