"""Tests for main.py: prompt-line handling, options and the REPL loop."""

import builtins
from unittest import mock

import pytest  # type: ignore

from main import (
    EXIT_KEYWORD,
    HELP_KEYWORD,
    PROMPT,
    build_session,
    handle_line,
    main,
    parse_args,
    print_help,
    repl,
)
from ops import ShellLimits


def feed(lines):
    """Make input() return each item in turn; exceptions are raised."""
    it = iter(lines)

    def fake_input(prompt=""):
        item = next(it)
        if isinstance(item, BaseException) or (isinstance(item, type) and issubclass(item, BaseException)):
            raise item
        return item

    return fake_input


class TestHandleLine:

    def test_help(self, session, capsys):
        assert handle_line(HELP_KEYWORD, session) == 0
        out = capsys.readouterr().out
        assert out.startswith("Usage of minibash:")
        assert "up to 4 arguments" in out

    def test_help_reflects_limits(self, capsys):
        print_help(ShellLimits(max_args=7))
        assert "up to 7 arguments" in capsys.readouterr().out

    def test_exit_keyword(self, session, capsys):
        assert handle_line(f"  {EXIT_KEYWORD}  ", session) is None
        assert capsys.readouterr().out == "Exiting minibash...\n"

    def test_empty_line_is_not_dispatched(self, session):
        with mock.patch("main.execute_line") as exe:
            handle_line("   ", session)
        exe.assert_not_called()

    def test_too_long(self, session, capfd):
        line = "echo " + "x" * 1100
        assert handle_line(line, session) == 1
        assert "Command too long. Maximum is 1024 characters." in capfd.readouterr().err

    def test_dispatches_trimmed_line(self, session, capfd):
        assert handle_line("   echo hi   ", session) == 0
        assert capfd.readouterr().out == "hi\n"


class TestRepl:

    def test_exit_keyword_ends_loop(self, session, capfd):
        with mock.patch.object(builtins, "input", feed(["echo one", EXIT_KEYWORD])):
            assert repl(session) == 0
        assert capfd.readouterr().out == "one\nExiting minibash...\n"

    def test_eof_returns_last_status(self, session):
        with mock.patch.object(builtins, "input", feed(["false", EOFError])):
            assert repl(session) == 1

    def test_interrupt_reprompts(self, session, capfd):
        prompts = []

        def fake_input(prompt=""):
            prompts.append(prompt)
            if len(prompts) == 1:
                raise KeyboardInterrupt
            if len(prompts) == 2:
                return "echo back"
            raise EOFError

        with mock.patch.object(builtins, "input", fake_input):
            assert repl(session) == 0
        assert prompts == [PROMPT, PROMPT, PROMPT]
        assert "back\n" in capfd.readouterr().out

    def test_unexpected_error_does_not_end_loop(self, session, capfd):
        with mock.patch("main.execute_line", side_effect=[RuntimeError("boom"), 0]), \
                mock.patch.object(builtins, "input", feed(["x", "y", EOFError])):
            repl(session)
        assert "minibash: exec error: boom" in capfd.readouterr().err

    def test_custom_prompt(self, session):
        seen = []

        def fake_input(prompt=""):
            seen.append(prompt)
            raise EOFError

        with mock.patch.object(builtins, "input", fake_input):
            repl(session, prompt="> ")
        assert seen == ["> "]


class TestOptions:

    def test_defaults(self):
        ns = parse_args([])
        assert ns.command is None
        assert ns.max_args is None and ns.jobs is None
        assert ns.no_color is False

    def test_limits_from_options_override_env(self, monkeypatch):
        monkeypatch.setenv("MINIBASH_MAX_ARGS", "6")
        monkeypatch.setenv("MINIBASH_JOBS", "9")
        session = build_session(parse_args(["--max-args", "5", "--no-color"]))
        assert session.limits.max_args == 5
        assert session.limits.job_capacity == 9
        assert session.jobs.capacity == 9
        assert session.color is False

    def test_rejects_non_positive(self):
        with pytest.raises(SystemExit):
            parse_args(["--jobs", "0"])

    def test_main_command(self, sandbox, capfd):
        with mock.patch("sys.argv", ["minibash", "-c", "false"]):
            with pytest.raises(SystemExit) as exc:
                main()
        assert exc.value.code == 1

    def test_main_command_negative_status(self, sandbox):
        with mock.patch("sys.argv", ["minibash", "-c", "echo a b c d e && true"]):
            with pytest.raises(SystemExit) as exc:
                main()
        assert exc.value.code == 255

    def test_main_explain(self, capsys):
        with mock.patch("sys.argv", ["minibash", "--explain", "ls | wc"]):
            with pytest.raises(SystemExit) as exc:
                main()
        assert exc.value.code == 0
        assert capsys.readouterr().out == "strategy: pipe\nCMD  ls\nOP   |\nCMD  wc\n"
