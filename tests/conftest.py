import io
import subprocess

import pytest

from pkglook_core import CommandRunner, Package, SearchResult
from pkglook_providers import Provider


class FakeProvider(Provider):
    name = "fake"

    def __init__(self, results=None, available=True):
        # query -> SearchResult (or an exception to raise)
        self.results = results or {}
        self.available = available
        self.queries = []

    def is_available(self):
        return self.available

    def search(self, query):
        self.queries.append(query)
        result = self.results.get(query, SearchResult())
        if isinstance(result, Exception):
            raise result
        return result

    def install_command(self, pkg):
        return "fake-install {}".format(pkg.name)


class FakeRunner(CommandRunner):
    """Returns canned CompletedProcess objects instead of running anything."""

    def __init__(self, stdout="", stderr="", returncode=0, interactive_returncode=0, elevation_cmd=None):
        super().__init__(elevation_cmd)
        self.stdout = stdout
        self.stderr = stderr
        self.returncode = returncode
        self.interactive_returncode = interactive_returncode
        self.calls = []
        self.interactive_calls = []

    def run_sync(self, cmd_list, require_root=False):
        self.calls.append((list(cmd_list), require_root))
        return subprocess.CompletedProcess(cmd_list, self.returncode, stdout=self.stdout, stderr=self.stderr)

    def run_interactive(self, command):
        self.interactive_calls.append(command)
        return self.interactive_returncode


class FakeTerminal:
    """Stands in for pkglook_term.Terminal; feeds keys from a list."""

    def __init__(self, keys=None, size=(24, 80)):
        self.keys = list(keys or [])
        self.size = size
        self.output = io.StringIO()
        self.frames = []
        self.events = []

    def __enter__(self):
        self.events.append("enter")
        return self

    def __exit__(self, exc_type, exc, tb):
        self.events.append("leave")
        return False

    def read_key(self, timeout=None):
        if self.keys:
            return self.keys.pop(0)
        return None

    def render(self, frame):
        self.frames.append(frame)

    def query_dimensions(self):
        return self.size

    def write(self, text):
        self.output.write(text)

    def flush(self):
        pass

    def clear_screen(self):
        pass

    def suspend(self):
        self.events.append("suspend")

    def resume(self):
        self.events.append("resume")

    def wait_for_keypress(self):
        self.events.append("wait")
        return 13


class FakeClock:
    def __init__(self, now=100.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def make_packages(count, source="extra", prefix="pkg"):
    return [
        Package(name="{}{}".format(prefix, i), version="1.{}".format(i),
                description="package number {}".format(i), source=source)
        for i in range(count)
    ]


@pytest.fixture
def clock():
    return FakeClock()
