#!/usr/bin/env python3

# Entry of minibash

from __future__ import annotations

import argparse
import os
import sys
from typing import Optional

try:
    import readline  # type: ignore
except Exception:  # pragma: no cover - fallback when readline unavailable
    readline = None

READLINE_ACTIVE = bool(readline)

PROMPT = "minibash$ "
EXIT_KEYWORD = "dter"
HELP_KEYWORD = "help"

from ops import ShellLimits, ShellSession, execute_line, explain_line  # local module in the same folder

HELP_TEXT = """\
Usage of minibash:
1. Normal Commands: Command with up to {max_args} arguments.
2. Special Commands: dter - Exit minibash. help - Print this help information.
3. Background Processes: Command ending with + to run in background. fore - Bring last background process to foreground.
4. Input/Output Redirection: < for input redirection. > for output redirection (overwrite). >> for output redirection (append).
5. Piping: Use | to pipe up to {max_pipe} commands.
6. Sequential Execution: Use ; to separate up to {max_sequence} commands.
7. Conditional Execution: Use && for AND and || for OR with up to {max_conditional} commands.
8. Word Count in File: Use # followed by filename.
9. Concatenate Files: Use ~ to concatenate up to {max_concat} .txt files.
"""


def print_help(limits: ShellLimits) -> None:
    sys.stdout.write(HELP_TEXT.format(
        max_args=limits.max_args,
        max_pipe=limits.max_pipe,
        max_sequence=limits.max_sequence,
        max_conditional=limits.max_conditional,
        max_concat=limits.max_concat,
    ))
    sys.stdout.flush()


def setup_readline() -> None:
    if not READLINE_ACTIVE:
        return
    try:
        readline.parse_and_bind("set editing-mode emacs")
        readline.parse_and_bind("Control-l: clear-screen")
    except Exception:
        pass


def handle_line(line: str, session: ShellSession) -> Optional[int]:
    """Run one prompt line.

    Returns the line's status, or None when the exit keyword was given.
    """
    stripped = line.strip()
    if not stripped:
        return session.last_status
    if len(line) > session.limits.max_line:
        session.error(f"Command too long. Maximum is {session.limits.max_line} characters.")
        session.last_status = 1
        return 1
    if stripped == HELP_KEYWORD:
        print_help(session.limits)
        return 0
    if stripped == EXIT_KEYWORD:
        print("Exiting minibash...")
        return None
    return execute_line(stripped, session)


def repl(session: ShellSession, prompt: str = PROMPT) -> int:
    setup_readline()

    while True:
        try:
            line = input(prompt)
        except EOFError:
            # Ctrl-D on empty line -> exit
            print()
            break
        except KeyboardInterrupt:
            # Ctrl-C at prompt -> drop the partial line and prompt again
            print()
            continue

        try:
            status = handle_line(line, session)
        except KeyboardInterrupt:
            print()
            continue
        except Exception as e:
            print(f"minibash: exec error: {e}", file=sys.stderr)
            session.last_status = 1
            continue
        if status is None:
            return 0

    return session.last_status


def parse_args(args=None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="minibash - a small line-oriented command interpreter",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  minibash                        # interactive prompt
  minibash -c "ls -l | wc -l"     # run one line and exit with its status
  minibash --explain "a && b || c"

Environment: MINIBASH_MAX_ARGS, MINIBASH_JOBS, NO_COLOR
"""
    )

    parser.add_argument(
        "-c", "--command",
        metavar="LINE",
        help="Run a single line and exit with its status"
    )
    parser.add_argument(
        "--explain",
        metavar="LINE",
        help="Print how LINE would be classified and split, without running it"
    )
    parser.add_argument(
        "--max-args",
        type=int,
        metavar="N",
        help="Maximum number of arguments per command (default 4)"
    )
    parser.add_argument(
        "--jobs",
        type=int,
        metavar="N",
        help="Capacity of the background job stack (default 100)"
    )
    parser.add_argument(
        "--prompt",
        default=os.environ.get("MINIBASH_PROMPT", PROMPT),
        help="Prompt text (default %(default)r)"
    )
    parser.add_argument(
        "--no-color",
        action="store_true",
        help="Do not color error messages"
    )

    ns = parser.parse_args(args)
    for name in ("max_args", "jobs"):
        value = getattr(ns, name)
        if value is not None and value < 1:
            parser.error(f"--{name.replace('_', '-')} must be a positive integer")
    return ns


def build_session(args: argparse.Namespace) -> ShellSession:
    limits = ShellLimits.from_env()
    if args.max_args is not None:
        limits.max_args = args.max_args
    if args.jobs is not None:
        limits.job_capacity = args.jobs
    return ShellSession(limits, color=False if args.no_color else None)


def main() -> None:
    args = parse_args()
    if args.explain is not None:
        print(explain_line(args.explain))
        sys.exit(0)
    session = build_session(args)
    if args.command is not None:
        status = handle_line(args.command, session)
        sys.exit(0 if status is None else status & 0xFF)
    sys.exit(repl(session, prompt=args.prompt) & 0xFF)


if __name__ == "__main__":
    main()
