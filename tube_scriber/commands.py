"""
Chat command grammar.

A message addressed to the bot starts with a trigger token followed by a
directive and an optional argument:

    _bs add https://www.youtube.com/@somechannel
    _bs rm https://www.youtube.com/@somechannel
    _bs list
    _bs help

Anything that does not start with a trigger is not for us and is ignored.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

import structlog

log = structlog.get_logger()

TRIGGER_PATTERN = re.compile(r"^(?:_botScriber|_bs)(?=\s|$)")


@dataclass(frozen=True)
class AddCommand:
    url: str | None


@dataclass(frozen=True)
class RemoveCommand:
    url: str | None


@dataclass(frozen=True)
class ListCommand:
    pass


@dataclass(frozen=True)
class HelpCommand:
    pass


@dataclass(frozen=True)
class UnknownCommand:
    directive: str


Command = AddCommand | RemoveCommand | ListCommand | HelpCommand | UnknownCommand


def is_triggered(text: str) -> bool:
    return TRIGGER_PATTERN.match(text) is not None


def parse_command(text: str) -> Command | None:
    """Parse a chat message into a Command, or None if there is nothing to run."""
    if not is_triggered(text):
        return None

    tokens = text.split()
    if len(tokens) < 2:
        log.error("commands.missing_directive", text=text[:100])
        return None

    directive = tokens[1]
    argument = tokens[2] if len(tokens) > 2 else None

    if directive == "add":
        return AddCommand(argument)
    if directive == "rm":
        return RemoveCommand(argument)
    if directive == "list":
        return ListCommand()
    if directive == "help":
        return HelpCommand()
    return UnknownCommand(directive)
