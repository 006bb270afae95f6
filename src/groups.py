"""Splitting utilities for minibash.

This module defines the data structures representing the pieces of a raw
input line (sub-commands and the AND/OR separators between them) and pure
helper functions that turn a line into owned sequences of those pieces.
Nothing here mutates its input or touches the operating system.
"""
from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Callable, Iterable, Optional

# Structural delimiters, one per strategy
PIPE = "|"
SEQUENCE = ";"
CONCAT = "~"
BACKGROUND = "+"

# Separator kinds for conditional chains
AND = "&&"
OR = "||"

_CONDITIONAL_SPLIT = re.compile(r"([&|]+)")


@dataclass
class CommandGroup:
    """A sub-command with its argv tokens (argv[0] is the program)."""
    parts: list[str]

    @property
    def text(self) -> str:
        return " ".join(self.parts)


@dataclass
class OperatorGroup:
    """A control separator between two sub-commands (AND or OR)."""
    op: str


# Discriminated union type alias
Group = CommandGroup | OperatorGroup


@dataclass
class ConditionalPart:
    """One link of a conditional chain.

    `next_op` is the separator that follows this sub-command, or None for
    the last one.
    """
    command: str
    next_op: Optional[str] = None


# --- Tokenization ---

def tokenize(line: str) -> list[str]:
    """Split a sub-command into its whitespace-separated argument fields."""
    return line.split()


def split_fields(line: str, delimiter: str) -> list[str]:
    """Split `line` on a single-character delimiter.

    Fields are stripped and empty fields are dropped, so runs of adjacent
    delimiters behave like a single one.
    """
    return [f.strip() for f in line.split(delimiter) if f.strip()]


def split_conditional(line: str) -> list[ConditionalPart]:
    """Split a line on the union of '&' and '|' characters.

    The kind of each separator is decided by the character immediately
    before the following sub-command: '&' means AND, anything else OR.
    """
    parts: list[ConditionalPart] = []
    pending: Optional[str] = None
    for piece in _CONDITIONAL_SPLIT.split(line):
        if not piece:
            continue
        if piece[0] in "&|":
            pending = AND if piece[-1] == "&" else OR
            continue
        command = piece.strip()
        if not command:
            continue
        if parts and pending is not None:
            parts[-1].next_op = pending
        parts.append(ConditionalPart(command))
        pending = None
    return parts


def split_at_marker(fields: list[str], is_marker: Callable[[str], bool]) -> tuple[list[str], Optional[str]]:
    """Return the fields before the first marker field and the marker itself."""
    for i, field in enumerate(fields):
        if is_marker(field):
            return fields[:i], field
    return list(fields), None


# --- Grouping ---

def group_fields(fields: Iterable[str], op: str) -> list[Group]:
    """Interleave sub-commands with a single repeated operator."""
    groups: list[Group] = []
    for field in fields:
        if groups:
            groups.append(OperatorGroup(op))
        groups.append(CommandGroup(tokenize(field)))
    return groups


def group_conditional(parts: Iterable[ConditionalPart]) -> list[Group]:
    groups: list[Group] = []
    for part in parts:
        groups.append(CommandGroup(tokenize(part.command)))
        if part.next_op is not None:
            groups.append(OperatorGroup(part.next_op))
    return groups


# --- Formatting (debug / test aid) ---

def format_groups(groups: Iterable[Group]) -> str:
    lines: list[str] = []
    for g in groups:
        if isinstance(g, CommandGroup):
            lines.append("CMD  " + g.text)
        else:
            lines.append("OP   " + g.op)
    return "\n".join(lines) if lines else "<empty>"
