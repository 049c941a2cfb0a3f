"""
Test the custom assert functions and the error taxonomy
"""

# Third Party
import pytest

# Local
from appbundle import exceptions


def test_assert_cluster_pass():
    """Make sure that no exception is throw by assert_cluster when it
    passes
    """
    exceptions.assert_cluster(True)


def test_assert_cluster_fail():
    """Make sure the right exception is thrown by assert_cluster when it
    fails
    """
    exception_msg = "error mesage"
    with pytest.raises(exceptions.ResourceConflictError, match=exception_msg):
        exceptions.assert_cluster(False, exception_msg)


def test_assert_manifest_fail():
    """Make sure the right exception is thrown by assert_manifest when it
    fails
    """
    exception_msg = "bad template"
    exceptions.assert_manifest(True, exception_msg)
    with pytest.raises(exceptions.ManifestParseError, match=exception_msg):
        exceptions.assert_manifest(False, exception_msg)


def test_assert_package_fail():
    """Make sure the right exception is thrown by assert_package when it
    fails
    """
    exception_msg = "no package"
    exceptions.assert_package(True, exception_msg)
    with pytest.raises(exceptions.PackageIntegrationError, match=exception_msg):
        exceptions.assert_package(False, exception_msg)


@pytest.mark.parametrize(
    ["error_class", "is_fatal"],
    [
        (exceptions.ManifestParseError, True),
        (exceptions.WorkloadFailedError, True),
        (exceptions.PackageIntegrationError, True),
        (exceptions.ResourceConflictError, False),
        (exceptions.ReadinessTimeoutError, False),
        (exceptions.ReconcileCancelledError, False),
    ],
)
def test_exception_derived_from_base(error_class, is_fatal):
    """Make sure every error is an AppBundleError with the right fatal flag"""
    err = error_class("message")
    assert isinstance(err, exceptions.AppBundleError)
    assert err.is_fatal_error == is_fatal
    assert str(err) == "message"
