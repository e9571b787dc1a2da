"""Shared fixtures: a scripted picker and a fake ripgrep."""

import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from todoscope.engine.errors import PickerCancelled
from todoscope.engine.picker import Picker, PickerRequest


FAKE_RG = """\
import json
import sys
import time

with open(sys.argv[1]) as f:
    spec = json.load(f)
time.sleep(spec["delay"])
for record in spec["records"]:
    line = record if isinstance(record, str) else json.dumps(record)
    sys.stdout.write(line + "\\n")
sys.stdout.flush()
sys.exit(spec["exit"])
"""


class FakePicker(Picker):
    """Picks a fixed row, or cancels."""

    def __init__(self, index: int = 0, cancel: bool = False):
        super().__init__()
        self.index = index
        self.cancel = cancel
        self.requests: List[PickerRequest] = []
        self.choice_lists: List[List[str]] = []
        self.choice: Optional[str] = None
        self.directory: Optional[str] = None

    def _select(self, request):
        self.requests.append(request)
        if self.cancel:
            raise PickerCancelled()
        return request.rows[self.index]

    def _choose(self, prompt, choices):
        self.choice_lists.append(list(choices))
        if self.choice is None:
            raise PickerCancelled()
        return self.choice

    def _read_directory(self, prompt, default):
        if self.directory is None:
            raise PickerCancelled()
        return self.directory


def rg_match(path: str, line_number: int, line: str, *spans) -> Dict[str, Any]:
    """A ``rg --json`` match record; spans are ``(start, end)`` byte offsets."""
    raw = line.encode("utf-8")
    return {
        "type": "match",
        "data": {
            "path": {"text": path},
            "lines": {"text": line + "\n"},
            "line_number": line_number,
            "absolute_offset": 0,
            "submatches": [
                {"match": {"text": raw[s:e].decode("utf-8")}, "start": s, "end": e}
                for s, e in spans
            ],
        },
    }


class FakeRipgrep:
    """Command builder running a scripted ripgrep stand-in."""

    def __init__(self, workdir: Path):
        self.workdir = workdir
        self.script = workdir / "fake_rg.py"
        self.script.write_text(FAKE_RG)
        self.records: List[Dict[str, Any]] = []
        self.delay = 0.0
        self.exit_code = 0
        self.calls: List[str] = []

    def __call__(self, directory: str, regexp: str) -> List[str]:
        self.calls.append(directory)
        spec = self.workdir / f"spec-{len(self.calls)}.json"
        spec.write_text(json.dumps({
            "delay": self.delay,
            "exit": self.exit_code,
            "records": self.records,
        }))
        return [sys.executable, str(self.script), str(spec)]


@pytest.fixture
def picker():
    return FakePicker()


@pytest.fixture
def fake_rg(tmp_path):
    workdir = tmp_path / "rg"
    workdir.mkdir()
    return FakeRipgrep(workdir)


@pytest.fixture
def source_tree(tmp_path):
    """A directory with one file holding two keywords."""
    root = tmp_path / "tree"
    (root / "src").mkdir(parents=True)
    main = root / "src" / "main.c"
    main.write_text("int main() {\n    // TODO: fix this\n    return 0; // BUG crash\n}\n")
    return root
