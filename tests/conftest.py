"""Shared fakes for the blob store, ssh-agent and buildkite-agent."""
import io
import json
import random
import time

import pytest

from s3secrets_helper.secrets.domains.errors import NotFoundError
from s3secrets_helper.secrets.domains.models import Config

SSH_AGENT_OUTPUT = (
    b"SSH_AUTH_SOCK=/path/to/socket; export SSH_AUTH_SOCK;\n"
    b"SSH_AGENT_PID=42; export SSH_AGENT_PID;\n"
    b"echo Agent pid 42\n"
)


class FakeClient:
    """
    In-memory bucket. `data` maps "bucket/key" to bytes, or to an exception
    instance to raise for that key. Gets sleep a random few milliseconds so
    fetches complete out of order.
    """

    def __init__(self, data, bucket="bkt", region="us-west-2", max_delay=0.05, exists=True):
        self.data = data
        self._bucket = bucket
        self._region = region
        self.max_delay = max_delay
        self.exists = exists
        self.list_errors = {}

    @property
    def bucket(self):
        return self._bucket

    @property
    def region(self):
        return self._region

    def get(self, key):
        time.sleep(random.random() * self.max_delay)
        value = self.data.get(f"{self._bucket}/{key}")
        if value is None:
            raise NotFoundError(key)
        if isinstance(value, Exception):
            raise value
        return value

    def list_suffix(self, prefix, suffixes):
        if prefix in self.list_errors:
            raise self.list_errors[prefix]
        matches = []
        for path in self.data:
            if not path.startswith(f"{self._bucket}/{prefix}"):
                continue
            key = path[len(self._bucket) + 1:]
            if key.endswith(tuple(suffixes)):
                matches.append(key)
        return sorted(matches)

    def bucket_exists(self):
        if isinstance(self.exists, Exception):
            raise self.exists
        return self.exists


class FakeAgent:
    def __init__(self):
        self.keys = []
        self.running = False
        self.add_error = None

    @property
    def pid(self):
        return 42

    def run(self):
        if self.running:
            return False
        self.running = True
        return True

    def add(self, key):
        if not self.running:
            raise RuntimeError("Agent must run() before add()")
        if self.add_error:
            raise self.add_error
        self.keys.append(key.decode())

    def stdout(self):
        return SSH_AGENT_OUTPUT if self.keys else b""


class FakeBuildkiteAgent:
    def __init__(self, version="3.73.0", supports_redactor=True):
        self._version = version
        self._supports_redactor = supports_redactor
        self.redacted_secrets = []
        self.files = []
        self.fail_calls = set()
        self.calls = 0

    def version(self):
        return self._version

    def supports_redactor(self):
        return self._supports_redactor

    def redactor_add_secrets_from_json(self, filepath):
        from s3secrets_helper.secrets.domains.errors import RedactionError

        self.calls += 1
        self.files.append(filepath)
        if self.calls in self.fail_calls:
            raise RedactionError("exit status 1")
        with open(filepath, encoding="utf-8") as f:
            self.redacted_secrets.extend(json.load(f).values())


@pytest.fixture
def fake_agent():
    return FakeAgent()


@pytest.fixture
def fake_buildkite_agent():
    return FakeBuildkiteAgent()


@pytest.fixture
def env_sink():
    return io.BytesIO()


@pytest.fixture
def make_config(fake_agent, fake_buildkite_agent, env_sink):
    """Build a Config around a FakeClient holding the given objects."""
    def _make(data, **kwargs):
        client = kwargs.pop("client", None) or FakeClient(data)
        options = dict(
            bucket="bkt",
            prefix="pipeline",
            client=client,
            ssh_agent=fake_agent,
            buildkite_agent=fake_buildkite_agent,
            env_sink=env_sink,
            git_credential_helper="/path/to/git-credential-s3-secrets",
            repo="git@github.com:buildkite/bash-example.git",
        )
        options.update(kwargs)
        return Config(**options)
    return _make
