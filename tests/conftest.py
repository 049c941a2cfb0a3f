"""
Shared test config
"""
# Standard
from unittest import mock

# Third Party
import pytest

# Local
from appbundle.test_helpers.helpers import configure_logging, library_config

configure_logging()


@pytest.fixture(autouse=True)
def no_local_kubeconfig():
    """This fixture makes sure the tests run as if KUBECONFIG is not exported in
    the environment, even if it is
    """
    with mock.patch(
        "kubernetes.config.new_client_from_config", side_effect=RuntimeError
    ):
        yield


@pytest.fixture
def fast_readiness():
    """Poll without sleeping and give up quickly"""
    with library_config(
        readiness={"poll_interval_seconds": 0, "timeout_seconds": 0.05}
    ):
        yield
