import pytest

from autoleveler.autolevel.controller import AutoLevel, AutoLevelOptions
from autoleveler.autolevel.mesh import HeightMesh, Point3


class FakeChannel:
    def __init__(self):
        self.sent = []
        self.loaded = []

    def send_gcode(self, text):
        self.sent.append(text)

    def load_gcode(self, name, text):
        self.loaded.append((name, text))

    def messages(self):
        return [t for t in self.sent if t.startswith("(AL:")]


@pytest.fixture(autouse=True)
def config_dir(tmp_path, monkeypatch):
    cfg = tmp_path / "config"
    monkeypatch.setenv("AUTOLEVELER_CONFIG_DIR", str(cfg))
    return cfg


@pytest.fixture
def channel():
    return FakeChannel()


@pytest.fixture
def options(tmp_path):
    return AutoLevelOptions(probe_file=str(tmp_path / "probe.txt"))


@pytest.fixture
def autolevel(channel, options):
    return AutoLevel(channel, options)


@pytest.fixture
def corner_points():
    return [Point3(0, 0, 0), Point3(100, 0, 0), Point3(0, 100, 0), Point3(100, 100, 10)]


@pytest.fixture
def flat_mesh():
    return HeightMesh.build([Point3(x, y, 0.0) for y in (0, 50, 100) for x in (0, 50, 100)])


@pytest.fixture
def prb():
    return lambda x, y, z, ok=1: f"[PRB:{x:.3f},{y:.3f},{z:.3f}:{ok}]\r\nok\r\n"
