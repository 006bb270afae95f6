# module for process launching and background job tracking

from __future__ import annotations

import os
import subprocess
import sys
from typing import IO, Any, List, Optional, Union

# Status reported when the program image could not be executed
EXEC_FAILURE_STATUS = 127
# Status reported when a child did not terminate normally
ABNORMAL_STATUS = -1

Stream = Union[int, IO[Any], None]


class ShellError(Exception):
    """Base class for every error recovered at the strategy boundary."""


class ShellInputError(ShellError):
    """The line itself is malformed; nothing was spawned."""


class ArityError(ShellInputError):
    pass


class CapacityError(ShellInputError):
    pass


class JobStackError(ShellInputError):
    pass


class LaunchError(ShellError):
    """A pipe, file or child process could not be created."""

    def __init__(self, where: str, err: OSError) -> None:
        super().__init__(f"{where}: {err.strerror or err}")
        self.where = where
        self.errno = err.errno


class ProcessHandle:
    """A spawned (or already failed) child process.

    Wraps a `subprocess.Popen` so callers only ever see a pid and a
    normalized exit status.
    """

    def __init__(self, argv: List[str], proc: Optional[subprocess.Popen] = None,
                 status: Optional[int] = None) -> None:
        self.argv = list(argv)
        self.proc = proc
        self.output = b""
        self._status = status

    def __repr__(self) -> str:
        return f"ProcessHandle(pid={self.pid!r}, argv={self.argv!r})"

    @property
    def pid(self) -> Optional[int]:
        return self.proc.pid if self.proc is not None else None

    @property
    def status(self) -> Optional[int]:
        return self._status

    def wait(self) -> int:
        """Block until the child terminates and return its exit status.

        A signal-terminated child reports -1. An interrupt arriving while we
        wait reaches the child as well, so the wait is simply resumed.
        """
        if self._status is not None:
            return self._status
        assert self.proc is not None
        while True:
            try:
                rc = self.proc.wait()
                break
            except KeyboardInterrupt:
                continue
        self._status = normalize_status(rc)
        return self._status

    def communicate(self) -> bytes:
        """Wait for the child while draining its captured stdout."""
        if self.proc is None or self.proc.stdout is None:
            self.wait()
            return self.output
        while True:
            try:
                out, _ = self.proc.communicate()
                break
            except KeyboardInterrupt:
                continue
        self._status = normalize_status(self.proc.returncode)
        self.output = out or b""
        return self.output


def normalize_status(returncode: int) -> int:
    # Popen reports death-by-signal as a negative returncode
    if returncode < 0:
        return ABNORMAL_STATUS
    return returncode


def _report_exec_failure(handle: ProcessHandle, err: OSError, target: Stream) -> None:
    msg = f"minibash: {handle.argv[0]}: {err.strerror or err}\n".encode()
    if target == subprocess.PIPE:
        # Caller is capturing the child's output; hand the message back there
        handle.output = msg
    elif isinstance(target, int) and target >= 0:
        os.write(target, msg)
    elif target is not None and hasattr(target, "write"):
        target.write(msg)
        target.flush()
    else:
        sys.stderr.write(msg.decode(errors="replace"))
        sys.stderr.flush()


def launch(argv: List[str], *, stdin: Stream = None, stdout: Stream = None,
           stderr: Stream = None, detach: bool = False) -> ProcessHandle:
    """Spawn `argv` as a child process.

    `stdin`/`stdout`/`stderr` are file descriptors, file objects or the
    `subprocess` constants; None inherits the interpreter's stream. The
    child's streams are rewired before its program image is replaced.

    A program that cannot be executed yields a handle that has already
    terminated with EXEC_FAILURE_STATUS. Failing to create the child at all
    raises LaunchError.
    """
    if not argv:
        raise ArityError("empty command")
    try:
        proc = subprocess.Popen(
            argv,
            stdin=stdin,
            stdout=stdout,
            stderr=stderr,
            start_new_session=detach,
        )
    except (FileNotFoundError, PermissionError, NotADirectoryError, IsADirectoryError) as e:
        handle = ProcessHandle(argv, status=EXEC_FAILURE_STATUS)
        # The diagnostic goes where the child's stderr would have gone
        _report_exec_failure(handle, e, stdout if stderr == subprocess.STDOUT else stderr)
        return handle
    except OSError as e:
        raise LaunchError(f"fork {argv[0]}", e) from e
    return ProcessHandle(argv, proc)


def run(argv: List[str], **kwargs: Any) -> int:
    """Spawn `argv` synchronously and return its exit status."""
    return launch(argv, **kwargs).wait()


class JobStack:
    """Bounded LIFO of backgrounded processes.

    Push only succeeds below capacity and pop only on a non-empty stack;
    both raise JobStackError otherwise and leave the stack untouched.
    """

    def __init__(self, capacity: int = 100) -> None:
        if capacity < 1:
            raise ValueError("job stack capacity must be positive")
        self.capacity = capacity
        self._jobs: List[ProcessHandle] = []

    def __len__(self) -> int:
        return len(self._jobs)

    def __bool__(self) -> bool:
        return bool(self._jobs)

    @property
    def full(self) -> bool:
        return len(self._jobs) >= self.capacity

    def push(self, handle: ProcessHandle) -> None:
        if self.full:
            raise JobStackError("Background process stack overflow.")
        self._jobs.append(handle)

    def pop(self) -> ProcessHandle:
        if not self._jobs:
            raise JobStackError("No background process found.")
        return self._jobs.pop()

    def peek(self) -> Optional[ProcessHandle]:
        return self._jobs[-1] if self._jobs else None

    def pids(self) -> List[Optional[int]]:
        return [job.pid for job in self._jobs]
