from __future__ import annotations

import os
import shutil
import subprocess
import sys
from dataclasses import dataclass
from enum import Enum
from typing import BinaryIO, Callable, Dict, List, Optional, Tuple

from command import (
    ABNORMAL_STATUS,
    ArityError,
    CapacityError,
    JobStack,
    JobStackError,
    LaunchError,
    ShellError,
    ShellInputError,
    launch,
    run,
)
from groups import (
    AND,
    BACKGROUND,
    CONCAT,
    OR,
    PIPE,
    SEQUENCE,
    CommandGroup,
    Group,
    format_groups,
    group_conditional,
    group_fields,
    split_at_marker,
    split_conditional,
    split_fields,
    tokenize,
)

FOREGROUND_KEYWORD = "fore"
WORD_COUNT_SIGIL = "#"
TEXT_EXTENSION = ".txt"

_COPY_CHUNK = 64 * 1024


class Strategy(Enum):
    CONDITIONAL = "conditional"
    PIPE = "pipe"
    REDIRECT_APPEND = "redirect-append"
    REDIRECT_OUT = "redirect-out"
    REDIRECT_IN = "redirect-in"
    BACKGROUND = "background"
    FOREGROUND = "foreground"
    SEQUENTIAL = "sequential"
    WORD_COUNT = "word-count"
    CONCAT = "concat"
    SIMPLE = "simple"


class RedirectMode(Enum):
    IN = "<"
    OUT = ">"
    APPEND = ">>"


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        value = 0
    if value < 1:
        sys.stderr.write(f"minibash: ignoring invalid {name}={raw!r}\n")
        sys.stderr.flush()
        return default
    return value


@dataclass
class ShellLimits:
    """Hard bounds on line shape and background jobs."""
    max_args: int = 4
    max_pipe: int = 4
    max_sequence: int = 4
    max_conditional: int = 5
    max_concat: int = 4
    job_capacity: int = 100
    max_line: int = 1024

    @classmethod
    def from_env(cls) -> "ShellLimits":
        return cls(
            max_args=_env_int("MINIBASH_MAX_ARGS", cls.max_args),
            job_capacity=_env_int("MINIBASH_JOBS", cls.job_capacity),
        )


def _use_color() -> bool:
    return sys.stderr.isatty() and os.environ.get("NO_COLOR") is None


class ShellSession:
    """Holds the interpreter-wide state: limits, the job stack, output style."""

    def __init__(self, limits: Optional[ShellLimits] = None, *, color: Optional[bool] = None) -> None:
        self.limits: ShellLimits = limits if limits is not None else ShellLimits()
        self.jobs: JobStack = JobStack(self.limits.job_capacity)
        self.color: bool = _use_color() if color is None else color
        self.last_status: int = 0

    def format_error(self, msg: str) -> str:
        text = f"minibash: {msg}"
        if self.color:
            text = f"\033[1;31m{text}\033[0m"
        return text + "\n"

    def error(self, msg: str) -> None:
        sys.stderr.write(self.format_error(msg))
        sys.stderr.flush()

    def info(self, msg: str) -> None:
        sys.stdout.write(msg + "\n")
        sys.stdout.flush()

    def write(self, data: bytes) -> None:
        if not data:
            return
        sys.stdout.flush()
        out = getattr(sys.stdout, "buffer", None)
        if out is not None:
            out.write(data)
            out.flush()
        else:
            sys.stdout.write(data.decode(errors="replace"))
        sys.stdout.flush()


def _flush_std() -> None:
    # Children write straight to fd 1/2; keep our buffered output ahead of theirs
    sys.stdout.flush()
    sys.stderr.flush()


# ---- Dispatcher ----

def classify(line: str) -> Strategy:
    """Pick the execution strategy for a trimmed, non-empty line.

    The order of the checks is the operator precedence: a line holding both
    '|' and ';' is a pipe, never a sequence.
    """
    if "&&" in line or "||" in line:
        return Strategy.CONDITIONAL
    if "|" in line:
        return Strategy.PIPE
    if ">" in line:
        return Strategy.REDIRECT_APPEND if ">>" in line else Strategy.REDIRECT_OUT
    if "<" in line:
        return Strategy.REDIRECT_IN
    if BACKGROUND in line:
        return Strategy.BACKGROUND
    if line == FOREGROUND_KEYWORD:
        return Strategy.FOREGROUND
    if SEQUENCE in line:
        return Strategy.SEQUENTIAL
    if line.startswith(WORD_COUNT_SIGIL):
        return Strategy.WORD_COUNT
    if CONCAT in line:
        return Strategy.CONCAT
    return Strategy.SIMPLE


def decompose(line: str) -> List[Group]:
    """Show how the chosen strategy splits `line` (debug / --explain aid)."""
    strategy = classify(line)
    if strategy is Strategy.CONDITIONAL:
        return group_conditional(split_conditional(line))
    if strategy is Strategy.PIPE:
        return group_fields(split_fields(line, PIPE), PIPE)
    if strategy is Strategy.SEQUENTIAL:
        return group_fields(split_fields(line, SEQUENCE), SEQUENCE)
    if strategy is Strategy.CONCAT:
        return group_fields(split_fields(line, CONCAT), CONCAT)
    if strategy is Strategy.WORD_COUNT:
        return [CommandGroup([line.removeprefix(WORD_COUNT_SIGIL).strip()])]
    return [CommandGroup(tokenize(line))]


def explain_line(line: str) -> str:
    line = line.strip()
    if not line:
        return "<empty>"
    return f"strategy: {classify(line).value}\n{format_groups(decompose(line))}"


# ---- Validation helpers ----

def _check_arity(argv: List[str], session: ShellSession) -> List[str]:
    limit = session.limits.max_args
    if not 1 <= len(argv) <= limit:
        raise ArityError(f"Invalid number of arguments. Maximum is {limit}.")
    return argv


def _check_count(items: List, limit: int, what: str) -> None:
    if len(items) > limit:
        raise CapacityError(f"Too many {what}. Maximum is {limit}.")


# ---- Execution strategies ----

def run_simple(line: str, session: ShellSession) -> int:
    argv = _check_arity(tokenize(line), session)
    _flush_std()
    return run(argv)


def run_pipe(line: str, session: ShellSession) -> int:
    stages = split_fields(line, PIPE)
    _check_count(stages, session.limits.max_pipe, "commands for piping")
    # Validate every stage first so a bad one spawns nothing
    argvs = [_check_arity(tokenize(stage), session) for stage in stages]

    status = 0
    in_fd: Optional[int] = None
    _flush_std()
    try:
        for idx, argv in enumerate(argvs):
            read_fd: Optional[int] = None
            write_fd: Optional[int] = None
            if idx < len(argvs) - 1:
                try:
                    read_fd, write_fd = os.pipe()
                except OSError as e:
                    raise LaunchError("pipe", e) from e
            try:
                handle = launch(argv, stdin=in_fd, stdout=write_fd)
            except LaunchError:
                if read_fd is not None:
                    os.close(read_fd)
                raise
            finally:
                if write_fd is not None:
                    os.close(write_fd)
            if in_fd is not None:
                os.close(in_fd)
            in_fd = read_fd
            # Each stage finishes before the next starts; output beyond one pipe
            # buffer blocks here until the stage is interrupted
            status = handle.wait()
    finally:
        if in_fd is not None:
            os.close(in_fd)
    return status


def _redirect_target(fields: List[str]) -> Tuple[List[str], Optional[str]]:
    argv, op = split_at_marker(fields, lambda f: f[0] in "<>")
    if op is None:
        return argv, None
    attached = op.lstrip("<>")
    if attached:
        return argv, attached
    pos = len(argv) + 1
    return argv, (fields[pos] if pos < len(fields) else None)


_OPEN_FLAGS: Dict[RedirectMode, int] = {
    RedirectMode.IN: os.O_RDONLY,
    RedirectMode.OUT: os.O_WRONLY | os.O_CREAT | os.O_TRUNC,
    RedirectMode.APPEND: os.O_WRONLY | os.O_CREAT | os.O_APPEND,
}


def run_redirect(line: str, mode: RedirectMode, session: ShellSession) -> int:
    argv, target = _redirect_target(tokenize(line))
    if target is None or not 1 <= len(argv) <= session.limits.max_args:
        raise ShellInputError("Invalid arguments or no file specified for redirection.")

    try:
        fd = os.open(target, _OPEN_FLAGS[mode], 0o644)
    except OSError as e:
        raise LaunchError(f"open {target}", e) from e
    try:
        _flush_std()
        if mode is RedirectMode.IN:
            handle = launch(argv, stdin=fd)
        else:
            handle = launch(argv, stdout=fd)
        return handle.wait()
    finally:
        os.close(fd)


def _background_argv(fields: List[str]) -> List[str]:
    argv, marker = split_at_marker(fields, lambda f: f.endswith(BACKGROUND))
    if marker is not None and marker != BACKGROUND:
        # "sleep 5+" keeps "5" as an argument
        argv.append(marker[:-len(BACKGROUND)])
    return argv


def run_background(line: str, session: ShellSession) -> int:
    argv = _check_arity(_background_argv(tokenize(line)), session)
    if session.jobs.full:
        raise JobStackError("Background process stack overflow.")
    _flush_std()
    handle = launch(argv, detach=True)
    if handle.pid is None:
        # Could not be executed; there is nothing to track
        return handle.wait()
    session.jobs.push(handle)
    session.info(f"Process running in background with PID {handle.pid}")
    return 0


def run_foreground(session: ShellSession) -> int:
    handle = session.jobs.pop()
    status = handle.wait()
    session.info(f"Process {handle.pid} brought to foreground.")
    return status


def run_sequential(line: str, session: ShellSession) -> int:
    commands = split_fields(line, SEQUENCE)
    _check_count(commands, session.limits.max_sequence, "commands for sequential execution")
    status = 0
    for cmd in commands:
        try:
            status = run_simple(cmd, session)
        except ShellInputError as e:
            session.error(str(e))
            status = 1
    return status


def _run_captured(cmd: str, session: ShellSession) -> Tuple[int, bytes]:
    try:
        argv = _check_arity(tokenize(cmd), session)
    except ArityError as e:
        # Reported in the chain's output stream, in order with the other commands
        return ABNORMAL_STATUS, session.format_error(str(e)).encode()
    handle = launch(argv, stdout=subprocess.PIPE, stderr=subprocess.STDOUT)
    output = handle.communicate()
    return handle.wait(), output


def run_conditional(line: str, session: ShellSession) -> int:
    """Evaluate an AND/OR chain left to right.

    A failing command before '&&' ends the chain. A succeeding command
    before '||' skips only the next command; evaluation then resumes.
    """
    parts = split_conditional(line)
    _check_count(parts, session.limits.max_conditional, "commands for conditional execution")

    last_status = 0
    skip_next = False
    _flush_std()
    for part in parts:
        if skip_next:
            skip_next = False
            continue
        last_status, output = _run_captured(part.command, session)
        session.write(output)
        if part.next_op == AND and last_status != 0:
            break
        if part.next_op == OR and last_status == 0:
            skip_next = True
    return last_status


# ---- Utilities ----

def _count_words(stream: BinaryIO) -> int:
    words = 0
    in_word = False
    for chunk in iter(lambda: stream.read(_COPY_CHUNK), b""):
        words += len(chunk.split())
        # A word straddling two chunks was counted twice
        if in_word and not chunk[:1].isspace():
            words -= 1
        in_word = not chunk[-1:].isspace()
    return words


def count_words(line: str, session: ShellSession) -> int:
    filename = line.removeprefix(WORD_COUNT_SIGIL).lstrip()
    if not filename or not os.access(filename, os.F_OK):
        raise ShellInputError("File does not exist or is not accessible.")
    try:
        f = open(filename, "rb")
    except OSError as e:
        raise LaunchError(f"open {filename}", e) from e
    with f:
        words = _count_words(f)
    session.info(f"Word count: {words}")
    return 0


def concatenate_files(line: str, session: ShellSession) -> int:
    files = split_fields(line, CONCAT)
    _check_count(files, session.limits.max_concat, "files for concatenation")

    # Every file is checked before anything is printed
    for name in files:
        if not name.endswith(TEXT_EXTENSION):
            raise ShellInputError(f"{name}: File is not a {TEXT_EXTENSION} file.")
        if not os.access(name, os.F_OK):
            raise ShellInputError(f"{name}: File does not exist or is not accessible.")
        try:
            with open(name, "rb"):
                pass
        except OSError as e:
            raise LaunchError(f"open {name}", e) from e

    sys.stdout.flush()
    out = getattr(sys.stdout, "buffer", None)
    for name in files:
        try:
            f = open(name, "rb")
        except OSError as e:
            raise LaunchError(f"open {name}", e) from e
        with f:
            if out is not None:
                shutil.copyfileobj(f, out, _COPY_CHUNK)
            else:
                for chunk in iter(lambda: f.read(_COPY_CHUNK), b""):
                    sys.stdout.write(chunk.decode(errors="replace"))
    if out is not None:
        out.flush()
    sys.stdout.flush()
    return 0


_STRATEGIES: Dict[Strategy, Callable[[str, ShellSession], int]] = {
    Strategy.CONDITIONAL: run_conditional,
    Strategy.PIPE: run_pipe,
    Strategy.REDIRECT_APPEND: lambda line, s: run_redirect(line, RedirectMode.APPEND, s),
    Strategy.REDIRECT_OUT: lambda line, s: run_redirect(line, RedirectMode.OUT, s),
    Strategy.REDIRECT_IN: lambda line, s: run_redirect(line, RedirectMode.IN, s),
    Strategy.BACKGROUND: run_background,
    Strategy.FOREGROUND: lambda line, s: run_foreground(s),
    Strategy.SEQUENTIAL: run_sequential,
    Strategy.WORD_COUNT: count_words,
    Strategy.CONCAT: concatenate_files,
    Strategy.SIMPLE: run_simple,
}


def execute_line(line: str, session: ShellSession) -> int:
    """Classify `line`, run it, and return its exit status.

    Every ShellError is reported here and turned into status 1; no error
    in a single line ends the interpreter.
    """
    line = line.strip()
    if not line:
        return session.last_status
    strategy = classify(line)
    try:
        status = _STRATEGIES[strategy](line, session)
    except ShellError as e:
        session.error(str(e))
        status = 1
    session.last_status = status
    return status
