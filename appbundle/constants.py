"""
Shared module to hold constant values for the library
"""

# The AppBundle custom resource
BUNDLE_GROUP = "app.example.com"
BUNDLE_VERSION = "v1alpha1"
BUNDLE_API_VERSION = f"{BUNDLE_GROUP}/{BUNDLE_VERSION}"
BUNDLE_KIND = "AppBundle"

# Finalizer token recorded on every bundle. Its presence gates deletion.
BUNDLE_FINALIZER = "app.example.com/finalizer"

# Tracking labels injected into every produced resource
BUNDLE_LABEL = "app.example.com/appbundle"
GROUP_LABEL = "app.example.com/group"
COMPONENT_LABEL = "app.example.com/component"

# GitOps sync engine annotation contract. These are only ever written.
SYNC_WAVE_ANNOTATION = "argocd.argoproj.io/sync-wave"
HOOK_ANNOTATION = "argocd.argoproj.io/hook"
HOOK_DELETE_POLICY_ANNOTATION = "argocd.argoproj.io/hook-delete-policy"
GATE_HOOK = "Sync"
GATE_HOOK_DELETE_POLICY = "BeforeHookCreation"

# Number of waves reserved per group. A group must hold fewer components than
# this for its waves to stay below the next group's.
WAVES_PER_GROUP = 100

# Package orchestration service resources
PACKAGE_VARIANT_API_VERSION = "config.porch.kpt.dev/v1alpha1"
PACKAGE_VARIANT_KIND = "PackageVariant"
REPOSITORY_API_VERSION = "config.porch.kpt.dev/v1alpha1"
REPOSITORY_KIND = "Repository"
PACKAGE_REVISION_API_VERSION = "porch.kpt.dev/v1alpha1"
PACKAGE_REVISION_KIND = "PackageRevision"
PACKAGE_REVISION_RESOURCES_KIND = "PackageRevisionResources"

# Name of the package file that describes the package itself rather than a
# deployable resource
KPTFILE_NAME = "Kptfile"

# The name of the condition used to signal readiness
READY_CONDITION = "Ready"

# Kinds that need no readiness check once they exist
IMMEDIATELY_READY_KINDS = frozenset(
    [
        "Namespace",
        "ConfigMap",
        "Secret",
        "Service",
        "PersistentVolumeClaim",
        "ServiceAccount",
        "Role",
        "RoleBinding",
        "ClusterRole",
        "ClusterRoleBinding",
        "Ingress",
        "NetworkPolicy",
    ]
)

# Kinds produced by a package that are never waited on after discovery
INFRASTRUCTURE_KINDS = frozenset(
    [
        "Namespace",
        "ConfigMap",
        "Secret",
        "ServiceAccount",
        "Role",
        "RoleBinding",
        "ClusterRole",
        "ClusterRoleBinding",
        "CustomResourceDefinition",
        "ResourceQuota",
        "LimitRange",
    ]
)

# Built-in kinds without a namespace. These never get the bundle namespace
# defaulted in and so never carry an owner reference to the bundle.
CLUSTER_SCOPED_KINDS = frozenset(
    [
        "Namespace",
        "ClusterRole",
        "ClusterRoleBinding",
        "CustomResourceDefinition",
        "PersistentVolume",
        "StorageClass",
        "PriorityClass",
        "IngressClass",
        "MutatingWebhookConfiguration",
        "ValidatingWebhookConfiguration",
        "APIService",
    ]
)

# Workload kinds that the gate job waits on, mapped to the kubectl resource
# name used in the rollout command
GATE_WORKLOAD_KINDS = {
    "Deployment": "deployment",
    "StatefulSet": "statefulset",
    "DaemonSet": "daemonset",
}

# Delimiter used for nested dict keys
NESTED_DICT_DELIM = "."

# Annotations on a bundle that override the logging config for its passes
LOG_DEFAULT_LEVEL_NAME = "app.example.com/log-default-level"
LOG_FILTERS_NAME = "app.example.com/log-filters"
LOG_THREAD_ID_NAME = "app.example.com/log-thread-id"
LOG_JSON_NAME = "app.example.com/log-json"
