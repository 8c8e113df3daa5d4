"""Shared fixtures: a fake Strava API behind requests.request."""
import json

import pytest
import requests

import reclassify


class FakeResponse:
    """Just enough of requests.Response for the client."""

    def __init__(self, status_code=200, body=None, text=None, reason="OK"):
        self.status_code = status_code
        self.reason = reason
        self._body = body
        self._text = text

    @property
    def ok(self):
        return 200 <= self.status_code < 300

    def json(self):
        if self._body is None:
            raise ValueError("No JSON body")
        return self._body

    @property
    def text(self):
        if self._text is not None:
            return self._text
        if self._body is not None:
            return json.dumps(self._body)
        return ""


class FakeStrava:
    """Records requests and answers them from a queue of responses."""

    def __init__(self):
        self.calls = []
        self.responses = []

    def queue(self, *responses):
        self.responses.extend(responses)

    def request(self, method, url, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        if not self.responses:
            raise AssertionError(f"Unexpected request: {method} {url}")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def calls_for(self, method):
        return [call for call in self.calls if call["method"] == method]


@pytest.fixture
def fake_strava(monkeypatch):
    strava = FakeStrava()
    monkeypatch.setattr(requests, "request", strava.request)
    return strava


@pytest.fixture
def config():
    return reclassify.Config(
        api_token="test-token",
        min_running_speed_kmh=4.0,
        max_running_speed_kmh=15.0,
    )


@pytest.fixture
def client():
    return reclassify.StravaClient("test-token")


@pytest.fixture
def make_response():
    return FakeResponse
