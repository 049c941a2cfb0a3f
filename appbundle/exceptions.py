"""
This module implements custom exceptions
"""

## Base Error ##################################################################


class AppBundleError(Exception):
    """Base class for all appbundle exceptions"""

    def __init__(self, message: str, is_fatal_error: bool):
        """Construct with a flag indicating whether this is a fatal error. This
        will be a static property of all children.
        """
        super().__init__(message)
        self._is_fatal_error = is_fatal_error

    @property
    def is_fatal_error(self):
        """Property indicating whether or not this error should stop any
        further waiting on the failing resource
        """
        return self._is_fatal_error


## Fatal Errors ################################################################


class AppBundleFatalError(AppBundleError):
    """An AppBundleFatalError indicates a failure that re-running the same
    pass will not fix without a change to the bundle or the cluster.
    """

    def __init__(self, message: str = ""):
        super().__init__(message=message, is_fatal_error=True)


class ManifestParseError(AppBundleFatalError):
    """A component definition is malformed: its template does not deserialize
    into a structured resource, or it has both or neither of a template and a
    package reference
    """


class WorkloadFailedError(AppBundleFatalError):
    """A workload reported an explicit failure (e.g. a Job with a Failed
    condition) while being waited on
    """


class PackageIntegrationError(AppBundleFatalError):
    """Creating, building, or waiting on a package-variant request failed"""


## Expected Errors #############################################################


class AppBundleExpectedError(AppBundleError):
    """An AppBundleExpectedError terminates the current pass, but is expected
    to resolve in a subsequent pass.
    """

    def __init__(self, message: str = ""):
        super().__init__(message=message, is_fatal_error=False)


class ResourceConflictError(AppBundleExpectedError):
    """A get, create, update, or delete against the cluster failed"""


class ReadinessTimeoutError(AppBundleExpectedError):
    """A readiness predicate was not satisfied within the timeout"""


class ReconcileCancelledError(AppBundleExpectedError):
    """The surrounding execution was cancelled while a pass was waiting"""


## Assertions ##################################################################


def assert_cluster(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a ResourceConflictError. This
    should be used when an operation against the cluster must succeed.
    """
    if not condition:
        raise ResourceConflictError(message)


def assert_manifest(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a ManifestParseError. This
    should be used when validating the content of a component definition.
    """
    if not condition:
        raise ManifestParseError(message)


def assert_package(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a PackageIntegrationError"""
    if not condition:
        raise PackageIntegrationError(message)
