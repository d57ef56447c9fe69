"""Tests for the mock provider."""
import asyncio

import pytest

from selfie_generator.exceptions import ProviderError
from selfie_generator.mock_client import MOCK_POLL_FAILED, MOCK_SUBMIT_FAILED, MockClient


class TestMockClient:
    def test_returns_mock_url(self, make_request) -> None:
        result = asyncio.run(MockClient("mock").generate(make_request()))
        assert result.image_url.startswith("mock://mock-")
        assert result.image_url.endswith("/image.png")
        assert result.request_id.startswith("mock-req-")

    def test_fail_counters_decrement(self, make_request) -> None:
        client = MockClient("m", {"failSubmitTimes": 1, "failPollTimes": 1, "pendingPolls": 0})

        with pytest.raises(ProviderError) as exc_info:
            asyncio.run(client.generate(make_request()))
        assert exc_info.value.code == MOCK_SUBMIT_FAILED
        assert exc_info.value.transient is True

        with pytest.raises(ProviderError) as exc_info:
            asyncio.run(client.generate(make_request()))
        assert exc_info.value.code == MOCK_POLL_FAILED

        assert asyncio.run(client.generate(make_request())).image_url

    def test_non_transient_failures(self, make_request) -> None:
        client = MockClient("m", {"failSubmitTimes": 1, "transient": False})
        with pytest.raises(ProviderError) as exc_info:
            asyncio.run(client.generate(make_request()))
        assert exc_info.value.transient is False

    def test_echo_reference_data_url(self, make_request) -> None:
        request = make_request()
        client = MockClient("m", {"echoReferenceDataUrl": True, "pendingPolls": 0})
        assert asyncio.run(client.generate(request)).image_url == request.reference_image_data_url
