"""Scripted stand-in for the process runner: sprite, tmux, tar and ssh-keygen calls."""

from __future__ import annotations

import inspect
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from cockpit.runner import ProcessRunner, RunResult


@dataclass
class Call:
    cmd: str
    args: list[str]
    stdio: str
    env: dict[str, str] | None = None

    @property
    def text(self) -> str:
        return " ".join([self.cmd, *self.args])

    @property
    def script(self) -> str:
        return self.args[-1] if self.args else ""

    @property
    def verb(self) -> str | None:
        """First sprite sub-command after the -o/-s scoping flags."""
        args = list(self.args)
        while args and args[0] in ("-o", "-s"):
            args = args[2:]
        return args[0] if args else None


Outcome = RunResult | Callable[[Call], Any]


def sprite_verb(verb: str) -> Callable[[Call], bool]:
    return lambda call: call.cmd == "sprite" and call.verb == verb


def script_contains(text: str) -> Callable[[Call], bool]:
    return lambda call: call.cmd == "sprite" and call.verb == "exec" and text in call.script


@dataclass
class FakeRunner(ProcessRunner):
    tmux_value: str | None = None
    calls: list[Call] = field(default_factory=list)
    signals: list[int] = field(default_factory=list)
    _rules: list[tuple[Callable[[Call], bool], Outcome]] = field(default_factory=list)

    def __post_init__(self) -> None:
        super().__init__(dry_run=False)

    def on(self, match: Callable[[Call], bool], outcome: Outcome) -> FakeRunner:
        """Later rules take precedence over earlier ones."""
        self._rules.append((match, outcome))
        return self

    async def run(self, cmd, args=(), *, stdio="inherit", env=None, cwd=None, input_text=None, dry_run=None):
        call = Call(cmd, list(args), stdio, dict(env) if env else None)
        self.calls.append(call)
        for match, outcome in reversed(self._rules):
            if match(call):
                if isinstance(outcome, RunResult):
                    return outcome
                result = outcome(call)
                if inspect.isawaitable(result):
                    result = await result
                return result
        if cmd == "tmux":
            return self._tmux(call)
        return RunResult(0)

    def forward_signal(self, signum: int) -> None:
        self.signals.append(signum)

    def _tmux(self, call: Call) -> RunResult:
        if call.args[:2] == ["show-option", "-wqv"]:
            return RunResult(0, f"{self.tmux_value}\n" if self.tmux_value else "")
        if call.args[:2] == ["set-option", "-w"]:
            self.tmux_value = call.args[3]
        elif call.args[:2] == ["set-option", "-wu"]:
            self.tmux_value = None
        return RunResult(0)

    # ==================== Queries ====================

    def sprite_calls(self, verb: str) -> list[Call]:
        return [c for c in self.calls if c.cmd == "sprite" and c.verb == verb]

    def exec_scripts(self) -> list[str]:
        return [c.script for c in self.sprite_calls("exec")]
