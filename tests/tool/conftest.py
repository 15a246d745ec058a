from collections.abc import Generator
import logging
from unittest.mock import patch

import pytest

from kapply.client import InMemoryClient

_LOGGER = logging.getLogger(__name__)


@pytest.fixture(name="client")
def client_fixture() -> Generator[InMemoryClient, None, None]:
    """Replace the kubectl client used by the tool with an in memory one."""
    client = InMemoryClient()
    with patch("kapply.tool.apply.KubectlClient", return_value=client):
        yield client
