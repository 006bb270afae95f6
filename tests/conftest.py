import os
import sys
from pathlib import Path
import pytest

# Ensure we can import modules from src/ at collection time
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


@pytest.fixture()
def sandbox(tmp_path, monkeypatch):
    # Work in an isolated temp directory
    monkeypatch.chdir(tmp_path)
    # Prune environment to a minimal safe set
    monkeypatch.setenv("PATH", os.environ.get("PATH", "/usr/bin:/bin"))
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("LC_ALL", "C")
    monkeypatch.delenv("MINIBASH_MAX_ARGS", raising=False)
    monkeypatch.delenv("MINIBASH_JOBS", raising=False)
    return tmp_path


@pytest.fixture()
def session(sandbox):
    from ops import ShellSession
    sess = ShellSession(color=False)
    yield sess
    # Reap anything a test left in the background
    while sess.jobs:
        handle = sess.jobs.pop()
        if handle.proc is not None and handle.proc.poll() is None:
            handle.proc.kill()
        handle.wait()
