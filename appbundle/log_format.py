"""
Custom logging formats that carry the identity of the bundle being reconciled
"""

# First Party
from alog import AlogJsonFormatter


def _resource_fields(resource: dict) -> dict:
    metadata = resource.get("metadata") or {}
    return {
        "kind": resource.get("kind"),
        "apiVersion": resource.get("apiVersion"),
        "resourceVersion": metadata.get("resourceVersion"),
        "resourceName": metadata.get("name"),
        "resourceNamespace": metadata.get("namespace"),
        "bundlePhase": (resource.get("status") or {}).get("phase"),
    }


class BundleJsonFormatter(AlogJsonFormatter):
    """Json log format that stamps every record with the bundle being
    reconciled and the id of the pass. A record may carry its own `resource`
    extra to log about a different object.
    """

    _FIELDS_TO_PRINT = AlogJsonFormatter._FIELDS_TO_PRINT + [
        "process",
        "thread",
        "threadName",
        "reconciliationId",
    ] + list(_resource_fields({}))

    def __init__(self, manifest=None, reconciliation_id=None):
        super().__init__()
        self.manifest = manifest
        self.reconciliation_id = reconciliation_id

    def format(self, record):
        if self.reconciliation_id:
            record.reconciliationId = self.reconciliation_id
        resource = getattr(record, "resource", self.manifest)
        if resource:
            for key, val in _resource_fields(resource).items():
                setattr(record, key, val)
        return super().format(record)
