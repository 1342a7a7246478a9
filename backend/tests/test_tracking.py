"""Tests for signed tracking links."""

from urllib.parse import parse_qs, urlparse

import pytest
from itsdangerous import BadSignature

from channelflow.services.tracking import CLICK_TRIGGER, OPEN_TRIGGER, TrackingLinks


@pytest.fixture
def links(settings):
    return TrackingLinks(settings)


def _token(url):
    return parse_qs(urlparse(url).query)["token"][0]


class TestTrackingLinks:
    def test_open_url_roundtrip(self, links):
        url = links.open_url("lead-1", run_id="run-1")

        assert url.startswith("http://testserver/api/track/open?token=")
        assert links.load_token(_token(url)) == {"lead_id": "lead-1", "trigger_id": OPEN_TRIGGER, "run_id": "run-1"}

    def test_click_url_quotes_target(self, links):
        url = links.click_url("lead-1", "https://example.com/pricing?plan=pro")

        query = parse_qs(urlparse(url).query)
        assert query["url"] == ["https://example.com/pricing?plan=pro"]
        assert links.load_token(query["token"][0])["trigger_id"] == CLICK_TRIGGER

    def test_for_step(self, links):
        tracking = links.for_step("lead-1", "run-1", 2)

        assert set(tracking) == {"open_url", "click_url_prefix"}
        assert tracking["click_url_prefix"].endswith("&url=")
        assert links.load_token(_token(tracking["open_url"]))["step_index"] == 2

    def test_tampered_token_is_rejected(self, links):
        token = links.make_token("lead-1", OPEN_TRIGGER)

        with pytest.raises(BadSignature):
            links.load_token(token[:-2] + "xx")

    def test_token_from_other_secret_is_rejected(self, links, settings_factory):
        other = TrackingLinks(settings_factory(TRACKING_SECRET_KEY="other-secret"))

        with pytest.raises(BadSignature):
            links.load_token(other.make_token("lead-1", OPEN_TRIGGER))
