import json
import subprocess
from pathlib import Path

import pytest
from loguru import logger

import exif_gps_fix


class FakeExiftool:
    """
    Stands in for the exiftool binary.

    `exif` maps file names to the JSON fields exiftool would report.
    Writes are recorded in `writes`; names in `fail_writes` fail.
    """

    def __init__(self):
        self.exif = {}
        self.writes = []
        self.fail_writes = set()
        self.installed = True
        self.broken_read = False

    def __call__(self, cmd, **kwargs):
        if not self.installed:
            raise FileNotFoundError('exiftool')

        if cmd[1] == '-ver':
            return subprocess.CompletedProcess(cmd, 0, stdout='12.76\n', stderr='')

        if '-json' in cmd:
            if self.broken_read:
                raise subprocess.CalledProcessError(1, cmd, output='', stderr='boom')
            files = [a for a in cmd[1:] if not a.startswith('-')]
            data = [{'SourceFile': f, **self.exif.get(Path(f).name, {})} for f in files]
            return subprocess.CompletedProcess(cmd, 0, stdout=json.dumps(data), stderr='')

        target = cmd[-1]
        self.writes.append(cmd)
        if Path(target).name in self.fail_writes:
            raise subprocess.CalledProcessError(1, cmd, output='', stderr=f'Error: cannot write {target}')
        return subprocess.CompletedProcess(cmd, 0, stdout='1 image files updated', stderr='')

    def written_files(self):
        return sorted(Path(cmd[-1]).name for cmd in self.writes)

@pytest.fixture
def exiftool(monkeypatch):
    fake = FakeExiftool()
    monkeypatch.setattr(exif_gps_fix.subprocess, 'run', fake)
    return fake

@pytest.fixture
def photo_dir(tmp_path):
    """Create empty image files under tmp_path; the fake exiftool supplies their metadata."""

    def make(*names):
        for name in names:
            path = tmp_path / name
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(b'')
        return tmp_path

    return make

@pytest.fixture(autouse=True)
def reset_logging():
    """Drop loguru sinks added by main() so they do not outlive the captured streams."""
    yield
    logger.remove()
