# Shared fixtures for the DoH / SRV / proxy tests.
# Outbound traffic never leaves the process: every test routes the shared
# httpx.AsyncClient through an httpx.MockTransport.
import os
import sys

import httpx
import pytest

SERVICE_ROOT = os.path.dirname(__file__)
if SERVICE_ROOT not in sys.path:
    sys.path.insert(0, SERVICE_ROOT)

from srv_proxy.utils_tests.upstream_mock import (  # noqa: E402
    RecordingTransport,
    make_dns_json,
)


@pytest.fixture
def dns_json():
    return make_dns_json


@pytest.fixture
def recording_transport():
    """Factory for a RecordingTransport."""
    return RecordingTransport


@pytest.fixture
def srv_answer_transport(recording_transport, dns_json):
    """Transport whose resolver answers with the given SRV data strings."""

    def _create(answers, upstream_handler=None):
        def doh(request):
            name = request.url.params.get("name")
            return httpx.Response(200, json=dns_json(answers, name=name))

        return recording_transport(doh, upstream_handler)

    return _create
