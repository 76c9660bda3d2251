"""
Shared fixtures: stub HTTP sessions, a recording sleep and Lambda context.
"""

import importlib.util
import json
import os
import sys
from dataclasses import dataclass
from pathlib import Path

os.environ.setdefault("POWERTOOLS_TRACE_DISABLED", "true")
os.environ.setdefault("POWERTOOLS_METRICS_NAMESPACE", "DamRenditionsTest")
os.environ.setdefault("AWS_DEFAULT_REGION", "us-east-1")

import pytest  # noqa: E402
import requests  # noqa: E402

REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT / "lambdas" / "layers" / "dam_renditions"))

from dam_renditions.config import MIB, DamConfig  # noqa: E402

DAM_URL = "https://dam.example.com"
UPLOAD_URL = "https://uploads.example.com"
QUEUE_URL = "https://queue.example.com"


def make_response(status_code=200, json_body=None, content=b"", url=""):
    """Build a real requests.Response carrying a JSON or raw body."""
    response = requests.Response()
    response.status_code = status_code
    response.url = url
    response.reason = "OK" if status_code < 400 else "Error"
    response.encoding = "utf-8"
    if json_body is not None:
        response._content = json.dumps(json_body).encode("utf-8")
        response.headers["Content-Type"] = "application/json"
    else:
        response._content = content
    return response


@dataclass
class Call:
    method: str
    url: str
    kwargs: dict


class FakeSession:
    """
    Stand-in for requests.Session.

    Replies are registered per method and URL fragment; the longest
    matching fragment wins. A reply list is consumed in order and its last
    element repeats. A reply may be a Response, an exception to raise, or
    a callable receiving the Call.
    """

    def __init__(self):
        self.headers = {}
        self.calls = []
        self.routes = []

    def add(self, method, fragment, *replies):
        self.routes.append((method, fragment, list(replies)))
        return self

    def calls_to(self, fragment, method=None):
        return [
            c
            for c in self.calls
            if fragment in c.url and (method is None or c.method == method)
        ]

    def request(self, method, url, **kwargs):
        call = Call(method, url, kwargs)
        self.calls.append(call)
        matches = [r for r in self.routes if r[0] == method and r[1] in url]
        if not matches:
            raise AssertionError(f"Unexpected request {method} {url}")
        _, _, replies = max(matches, key=lambda r: len(r[1]))
        reply = replies.pop(0) if len(replies) > 1 else replies[0]
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(call)
        return reply

    def get(self, url, **kwargs):
        return self.request("GET", url, **kwargs)

    def post(self, url, **kwargs):
        return self.request("POST", url, **kwargs)


class FakeUpstash:
    """In-memory Upstash REST list speaking the rpush/lrange/del commands."""

    def __init__(self, entries=None):
        self.headers = {}
        self.entries = list(entries or [])
        self.commands = []
        self.fail_with = None

    def request(self, method, url, data=None, **kwargs):
        command = url[len(QUEUE_URL) + 1 :].split("/")[0]
        self.commands.append(command)
        if self.fail_with is not None:
            return self.fail_with
        if command == "rpush":
            self.entries.append(data)
            result = len(self.entries)
        elif command == "lrange":
            result = list(self.entries)
        elif command == "del":
            result = 1 if self.entries else 0
            self.entries = []
        else:
            return make_response(400, {"error": f"unknown command {command}"})
        return make_response(200, {"result": result})


class RecordingSleep:
    def __init__(self):
        self.calls = []

    def __call__(self, seconds):
        self.calls.append(seconds)


@dataclass
class FakeLambdaContext:
    function_name: str = "dam-renditions-test"
    function_version: str = "$LATEST"
    memory_limit_in_mb: int = 256
    invoked_function_arn: str = (
        "arn:aws:lambda:us-east-1:123456789012:function:dam-renditions-test"
    )
    aws_request_id: str = "test-request-id"

    def get_remaining_time_in_millis(self):
        return 300000


def load_handler(relative_path, module_name):
    """Import a Lambda ``index.py`` under a unique module name."""
    spec = importlib.util.spec_from_file_location(
        module_name, REPO_ROOT / relative_path
    )
    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def config():
    return DamConfig(
        dam_base_url=DAM_URL,
        dam_token="Bearer dam-token",
        upload_endpoint=UPLOAD_URL,
        chunk_size=5 * MIB,
        queue_url=QUEUE_URL,
        queue_token="queue-token",
    )


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def upstash():
    return FakeUpstash()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def lambda_context():
    return FakeLambdaContext()
