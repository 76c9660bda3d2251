"""
Unit tests for RenditionFetcher
"""

import pytest
import requests
from conftest import make_response

from dam_renditions.dam_client import DamClient
from dam_renditions.fetcher import RenditionFetcher

ADDRESS = "https://cdn.example.com/transform/crop300/R1/photo"


@pytest.fixture
def fetcher(config, session):
    return RenditionFetcher(DamClient(config, session=session))


class TestDownload:
    def test_returns_bytes(self, fetcher, session):
        session.add("GET", ADDRESS, make_response(200, content=b"jpeg-bytes"))

        rendition = fetcher.download(ADDRESS, "crop300")

        assert rendition.preset == "crop300"
        assert rendition.content == b"jpeg-bytes"
        assert rendition.size == 10

    @pytest.mark.parametrize(
        "reply",
        [
            make_response(404, {"message": "not found"}),
            make_response(200, content=b""),
            requests.Timeout("slow"),
        ],
    )
    def test_failures_return_none(self, fetcher, session, reply):
        session.add("GET", ADDRESS, reply)

        assert fetcher.download(ADDRESS, "crop300") is None
