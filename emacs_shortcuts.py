#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Paul Tiffany
# Project: emacs-shortcuts - Short commands for opening files in emacs

"""
emacs-shortcuts - Open files in emacs with as few keystrokes as possible.

A single-file, zero-dependency tool that turns a handful of tokens (file
names, line numbers and saved aliases) into an emacs or emacsclient command,
remembering aliases and recent commands between runs.
"""

import argparse
import json
import os
import re
import shlex
import stat
import subprocess
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Protocol

# Project metadata
__version__ = "1.0.0"
__license__ = "MIT"

# --- Configuration ---
HISTORY_LIMIT = 25
MAX_FILE_ARGS = 4
EDITOR = "emacs"
EDITOR_CLIENT = "emacsclient"
NO_WINDOW_FLAG = "--no-window-system"
DEBUG_INIT_FLAG = "--debug-init"
STATE_FILE = "~/.emacs-shortcuts.json"
STATE_ENV = "EMACS_SHORTCUTS_STATE"
CORRUPT_SUFFIX = ".corrupt"

EXIT_OK = 0
EXIT_USER_ERROR = 1
EXIT_NOTHING_TO_DO = 3

SUBCOMMANDS = {"a", "d", "l", "g", "s", "h"}
TOP_LEVEL_FLAGS = {"-h", "--help", "--version", "--about"}

# --- Errors ---


class EmacsShortcutsError(Exception):
    """Base exception for emacs-shortcuts operations."""

    exit_code = EXIT_USER_ERROR


class UserInputError(EmacsShortcutsError):
    """Bad input from the user; aborts only the current command."""


class MalformedArgs(UserInputError):
    pass


class AliasAlreadyExists(UserInputError):
    pass


class AliasNotFound(UserInputError):
    pass


class FileNotFound(UserInputError):
    pass


class IndexOutOfRange(UserInputError):
    pass


class IncompatibleFlags(UserInputError):
    pass


class InvalidRegex(UserInputError):
    pass


class NoPreviousInvocation(EmacsShortcutsError):
    """Nothing to replay."""

    exit_code = EXIT_NOTHING_TO_DO


class EnvironmentFailure(EmacsShortcutsError):
    """A local filesystem call failed. Never retried."""


class PathResolutionError(EnvironmentFailure):
    pass


class StatError(EnvironmentFailure):
    pass


class StateCorruption(EmacsShortcutsError):
    """Persisted state could not be used."""


class DeserializationError(StateCorruption):
    pass


# --- Filesystem Capabilities ---


class FileSystem(Protocol):
    def stat(self, path: str) -> tuple[bool, bool]:
        """Return (is_directory, exists)."""
        ...

    def absolute_path(self, path: str) -> str: ...


class LocalFileSystem:
    """FileSystem backed by os.path."""

    def stat(self, path: str) -> tuple[bool, bool]:
        try:
            st = os.stat(path)
        except (FileNotFoundError, NotADirectoryError):
            return False, False
        except OSError as e:
            raise StatError(f"failed to stat {path!r}: {e}") from e
        return stat.S_ISDIR(st.st_mode), True

    def absolute_path(self, path: str) -> str:
        try:
            return os.path.abspath(path)
        except (OSError, ValueError) as e:
            raise PathResolutionError(f"failed to get absolute path for file {path!r}: {e}") from e


# --- FileToken Interpreter ---


@dataclass(frozen=True)
class FileSpec:
    """A path plus the line to jump to (0 means no jump)."""

    path: str
    line: int = 0


def parse_line_number(token: str) -> Optional[int]:
    """Parse a base-10 integer token, or return None."""
    if not re.fullmatch(r"[+-]?[0-9]+", token):
        return None
    return int(token, 10)


def pair_tokens(tokens: list[str]) -> list[FileSpec]:
    """Pair each filename with the integer that directly follows it, if any."""
    specs: list[FileSpec] = []
    pending: Optional[str] = None
    for token in tokens:
        if pending is None:
            pending = token
            continue

        line = parse_line_number(token)
        if line is None:
            specs.append(FileSpec(pending))
            pending = token
            continue

        specs.append(FileSpec(pending, line))
        pending = None
    if pending is not None:
        specs.append(FileSpec(pending))
    return specs


def check_token_count(tokens: list[str]) -> None:
    if len(tokens) > MAX_FILE_ARGS:
        raise MalformedArgs(f"Unprocessed extra args: {tokens[MAX_FILE_ARGS:]}")


def interpret(tokens: list[str]) -> list[FileSpec]:
    """Turn raw tokens into FileSpecs, last-given file first."""
    check_token_count(tokens)
    return list(reversed(pair_tokens(tokens)))


# --- Alias Resolver ---


class AliasTable:
    """Alias name to one or more stored paths."""

    def __init__(self, aliases: Optional[dict[str, list[str]]] = None):
        self.aliases: dict[str, list[str]] = {k: list(v) for k, v in (aliases or {}).items()}

    def __contains__(self, alias: str) -> bool:
        return alias in self.aliases

    def __len__(self) -> int:
        return len(self.aliases)

    def resolve(self, token: str) -> Optional[list[str]]:
        """Exact-match lookup; None when the token is not an alias."""
        paths = self.aliases.get(token)
        return list(paths) if paths is not None else None

    def check_unbound(self, alias: str) -> None:
        if alias in self.aliases:
            raise AliasAlreadyExists(f"alias already defined: ({self._line(alias)})")

    def add(self, alias: str, paths: list[str]) -> None:
        self.check_unbound(alias)
        self.aliases[alias] = list(paths)

    def delete(self, alias: str) -> None:
        if alias not in self.aliases:
            raise AliasNotFound(f"Alias {alias!r} does not exist")
        del self.aliases[alias]

    def delete_many(self, aliases: list[str]) -> list[str]:
        """Delete every known alias; return one warning per unknown name."""
        warnings: list[str] = []
        for alias in aliases:
            try:
                self.delete(alias)
            except AliasNotFound as e:
                warnings.append(str(e))
        return warnings

    def get(self, alias: str) -> str:
        if alias not in self.aliases:
            raise AliasNotFound(f"Alias {alias!r} does not exist")
        return self._line(alias)

    def list_lines(self) -> list[str]:
        return [self._line(alias) for alias in sorted(self.aliases)]

    def search(self, pattern: str) -> list[str]:
        """Status lines for aliases whose paths match the regex."""
        try:
            rx = re.compile(pattern)
        except re.error as e:
            raise InvalidRegex(f"Invalid regexp: {e}") from e
        return [
            self._line(alias)
            for alias in sorted(self.aliases)
            if rx.search(" ".join(self.aliases[alias]))
        ]

    def _line(self, alias: str) -> str:
        return f"{alias}: {' '.join(self.aliases[alias])}"


# --- Invocation Renderer ---


class RenderMode(Enum):
    DIRECT = "direct"
    DAEMON = "daemon"


@dataclass(frozen=True)
class Invocation:
    """A rendered command: kind is "exec" or "cd"."""

    kind: str
    argv: tuple[str, ...]

    def shell(self) -> str:
        return shlex.join(self.argv)


def _elisp_string(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _render_direct(specs: list[FileSpec], debug_init: bool) -> list[str]:
    argv = [EDITOR, NO_WINDOW_FLAG]
    if debug_init:
        argv.append(DEBUG_INIT_FLAG)
    for spec in specs:
        if spec.line != 0:
            argv.append(f"+{spec.line}")
        argv.append(spec.path)
    return argv


def _render_daemon(specs: list[FileSpec]) -> list[str]:
    exprs: list[str] = []
    find_cmd = "find-file"
    for spec in specs:
        exprs.append(f"({find_cmd} {_elisp_string(spec.path)})")
        if spec.line != 0:
            exprs.append(f"(goto-line {spec.line})")
        find_cmd = "find-file-other-window"
    if len(specs) == 2:
        exprs.append("(other-window 1)")
    return [EDITOR_CLIENT, "-t", "-e", f"(progn {''.join(exprs)})"]


def render(specs: list[FileSpec], mode: RenderMode, debug_init: bool = False) -> Invocation:
    """Render FileSpecs (already in display order) as an editor command."""
    if mode is RenderMode.DAEMON and debug_init:
        raise IncompatibleFlags(f"{DEBUG_INIT_FLAG} flag is not allowed in daemon mode")
    if not specs:
        raise MalformedArgs("no files to open")

    if mode is RenderMode.DIRECT:
        argv = _render_direct(specs, debug_init)
    else:
        argv = _render_daemon(specs)
    return Invocation("exec", tuple(argv))


def render_cd(path: str) -> Invocation:
    return Invocation("cd", ("cd", path))


# --- History Ledger ---


class HistoryLedger:
    """Executed commands, oldest first, capped at `capacity`."""

    def __init__(self, capacity: int = HISTORY_LIMIT, records: Optional[list[list[str]]] = None):
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._records: list[list[str]] = []
        for record in records or []:
            self.append(record)

    def __len__(self) -> int:
        return len(self._records)

    def append(self, record: list[str]) -> None:
        self._records.append(list(record))
        if len(self._records) > self.capacity:
            self._records = self._records[len(self._records) - self.capacity :]

    def records(self) -> list[list[str]]:
        """Stored commands, oldest first."""
        return [list(r) for r in self._records]

    def lines(self) -> list[str]:
        """Display lines, numbered so that 0 is the most recent command."""
        total = len(self._records)
        return [f"{total - 1 - idx:2d}: {' '.join(r)}" for idx, r in enumerate(self._records)]

    def get(self, index: int) -> list[str]:
        if index < 0 or index >= len(self._records):
            raise IndexOutOfRange(
                f"history index {index} is larger than list of stored commands ({len(self)})"
            )
        return list(self._records[len(self._records) - 1 - index])

    def last(self) -> Optional[list[str]]:
        return list(self._records[-1]) if self._records else None


# --- Session State ---


class SessionState:
    """Aliases and history for one process, plus a dirty flag."""

    def __init__(
        self,
        aliases: Optional[AliasTable] = None,
        history: Optional[HistoryLedger] = None,
    ):
        self.aliases = aliases if aliases is not None else AliasTable()
        self.history = history if history is not None else HistoryLedger()
        self.changed = False

    @classmethod
    def from_json(cls, text: str, capacity: int = HISTORY_LIMIT) -> "SessionState":
        """Build state from stored JSON; an empty string is a fresh state."""
        if not text.strip():
            return cls(history=HistoryLedger(capacity))
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise DeserializationError(f"failed to unmarshal emacs-shortcuts json: {e}") from e
        if not isinstance(data, dict):
            raise DeserializationError("failed to unmarshal emacs-shortcuts json: not an object")

        raw_aliases = data.get("aliases") or {}
        raw_history = data.get("history") or []
        if not isinstance(raw_aliases, dict) or not isinstance(raw_history, list):
            raise DeserializationError("failed to unmarshal emacs-shortcuts json: bad layout")

        aliases: dict[str, list[str]] = {}
        for name, paths in raw_aliases.items():
            # Older state files stored a single path per alias.
            if isinstance(paths, str):
                paths = [paths]
            if not isinstance(paths, list) or not all(isinstance(p, str) for p in paths):
                raise DeserializationError(f"bad paths for alias {name!r}")
            aliases[name] = paths

        for record in raw_history:
            if not isinstance(record, list) or not all(isinstance(s, str) for s in record):
                raise DeserializationError("bad history record")

        return cls(AliasTable(aliases), HistoryLedger(capacity, raw_history))

    def to_json(self) -> str:
        data = {"aliases": self.aliases.aliases, "history": self.history.records()}
        return json.dumps(data, indent=2, sort_keys=True, ensure_ascii=False)


def state_path(override: Optional[str] = None) -> Path:
    """Resolve the state file: CLI override, then environment, then default."""
    raw = override or os.environ.get(STATE_ENV) or STATE_FILE
    return Path(raw).expanduser()


def load_state(path: Path, capacity: int = HISTORY_LIMIT) -> SessionState:
    """Read state from disk; a corrupt file is moved aside before raising."""
    if not path.is_file():
        return SessionState(history=HistoryLedger(capacity))
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, PermissionError) as e:
        raise EnvironmentFailure(f"Error reading {path}: {e}") from e
    try:
        return SessionState.from_json(text, capacity)
    except DeserializationError:
        try:
            path.replace(path.with_name(path.name + CORRUPT_SUFFIX))
        except OSError as e:
            print(f"Warning: could not move corrupt state aside: {e}", file=sys.stderr)
        raise


def save_state(path: Path, state: SessionState) -> None:
    """Write state atomically: temp file then replace."""
    tmp = path.with_name(path.name + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp.write_text(state.to_json() + "\n", encoding="utf-8")
        tmp.replace(path)
    except (OSError, PermissionError) as e:
        raise EnvironmentFailure(f"Error writing {path}: {e}") from e


# --- Command Orchestrator ---


class Orchestrator:
    """Runs one open/replay request against a SessionState."""

    def __init__(
        self,
        state: SessionState,
        fs: FileSystem,
        allow_new_files: bool = False,
        mode: RenderMode = RenderMode.DIRECT,
        debug_init: bool = False,
    ):
        self.state = state
        self.fs = fs
        self.allow_new_files = allow_new_files
        self.mode = mode
        self.debug_init = debug_init

    def open(self, tokens: list[str]) -> Invocation:
        check_token_count(tokens)

        if not tokens:
            last = self.state.history.last()
            if last is None:
                raise NoPreviousInvocation("no previous executions")
            return Invocation("exec", tuple(last))

        # A lone directory (or alias bound to one) means cd, not edit.
        if len(tokens) == 1:
            target = self._directory_target(tokens[0])
            if target is not None:
                return render_cd(target)

        specs = self._resolve(pair_tokens(tokens))
        specs.reverse()

        if not self.allow_new_files:
            for spec in specs:
                _, exists = self.fs.stat(spec.path)
                if not exists:
                    raise FileNotFound(
                        f"file {spec.path!r} does not exist; include 'new' flag to create it"
                    )

        invocation = render(specs, self.mode, self.debug_init)
        self.state.history.append(list(invocation.argv))
        self.state.changed = True
        return invocation

    def replay(self, index: int) -> Invocation:
        return Invocation("exec", tuple(self.state.history.get(index)))

    def _directory_target(self, token: str) -> Optional[str]:
        is_dir, _ = self.fs.stat(token)
        if is_dir:
            return token
        paths = self.state.aliases.resolve(token)
        if paths and len(paths) == 1 and self.fs.stat(paths[0])[0]:
            return paths[0]
        return None

    def _resolve(self, specs: list[FileSpec]) -> list[FileSpec]:
        """Expand aliases in place; absolutize everything else."""
        resolved: list[FileSpec] = []
        for spec in specs:
            paths = self.state.aliases.resolve(spec.path)
            if not paths:
                resolved.append(FileSpec(self.fs.absolute_path(spec.path), spec.line))
                continue
            resolved.extend(FileSpec(p) for p in paths[:-1])
            resolved.append(FileSpec(paths[-1], spec.line))
        return resolved


# --- Alias Commands ---


def add_alias(
    state: SessionState,
    fs: FileSystem,
    alias: str,
    files: list[str],
    allow_new_files: bool = False,
) -> None:
    """Bind alias to the absolute paths of files."""
    state.aliases.check_unbound(alias)
    paths = []
    for name in files:
        path = fs.absolute_path(name)
        if not allow_new_files and not fs.stat(path)[1]:
            raise FileNotFound(f"file {path!r} does not exist; include 'new' flag to create it")
        paths.append(path)
    state.aliases.add(alias, paths)
    state.changed = True


def delete_aliases(state: SessionState, aliases: list[str]) -> list[str]:
    """Delete aliases in a batch; return warnings for the missing ones."""
    before = len(state.aliases)
    warnings = state.aliases.delete_many(aliases)
    if len(state.aliases) != before:
        state.changed = True
    return warnings


# --- CLI and Main Execution ---


def create_parser() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="e", description="Open files in emacs using short names and line numbers"
    )
    parser.add_argument("--state", help=f"State file (default: ${STATE_ENV} or {STATE_FILE})")
    parser.add_argument("--version", action="version", version=f"emacs-shortcuts {__version__}")
    parser.add_argument("--about", action="store_true", help="Show project info and exit")
    sub = parser.add_subparsers(dest="cmd")

    po = sub.add_parser("o", help="Open files (default when no subcommand is given)")
    po.add_argument("files", nargs="*", help="FILE [LINE] pairs or aliases (up to 4 tokens)")
    po.add_argument("-n", "--new", action="store_true", help="Allow files that do not exist yet")
    po.add_argument("-d", "--daemon", action="store_true", help="Open through emacsclient")
    po.add_argument("--debug-init", action="store_true", help="Start emacs with --debug-init")
    po.add_argument("-x", "--execute", action="store_true", help="Run the command directly")

    pa = sub.add_parser("a", help="Add an alias")
    pa.add_argument("alias", help="Alias name")
    pa.add_argument("files", nargs="+", help="File(s) the alias opens")
    pa.add_argument("-n", "--new", action="store_true", help="Allow files that do not exist yet")

    pd = sub.add_parser("d", help="Delete aliases")
    pd.add_argument("aliases", nargs="+", help="Alias names")

    sub.add_parser("l", help="List aliases")

    pg = sub.add_parser("g", help="Show one alias")
    pg.add_argument("alias", help="Alias name")

    ps = sub.add_parser("s", help="Search alias paths by regex")
    ps.add_argument("regexp", help="Regular expression")

    ph = sub.add_parser("h", help="List history, or rerun entry INDEX (0 = most recent)")
    ph.add_argument("index", nargs="?", type=int, help="History index")
    ph.add_argument("-x", "--execute", action="store_true", help="Run the command directly")
    return parser


def normalize_argv(argv: list[str]) -> list[str]:
    """Route anything that is not a subcommand to the open command."""
    idx = 0
    while idx < len(argv):
        token = argv[idx]
        if token == "--state":
            idx += 2
            continue
        if token.startswith("--state="):
            idx += 1
            continue
        break
    rest = argv[idx:]
    if rest and (rest[0] in SUBCOMMANDS or rest[0] in TOP_LEVEL_FLAGS):
        return argv
    return argv[:idx] + ["o"] + rest


def emit(invocation: Invocation, execute: bool) -> int:
    """Print the command for a shell wrapper, or run it."""
    if not execute:
        print(invocation.shell())
        return EXIT_OK
    if invocation.kind == "cd":
        print("Error: cannot change directory from a child process; omit --execute", file=sys.stderr)
        return EXIT_USER_ERROR
    try:
        return subprocess.run(list(invocation.argv), check=False).returncode
    except OSError as e:
        raise EnvironmentFailure(f"failed to run {invocation.argv[0]}: {e}") from e


def run_command(args: argparse.Namespace, state: SessionState, fs: FileSystem) -> int:
    """Dispatch a parsed command against loaded state."""
    if args.cmd == "a":
        add_alias(state, fs, args.alias, args.files, args.new)
        return EXIT_OK

    if args.cmd == "d":
        for warning in delete_aliases(state, args.aliases):
            print(f"Warning: {warning}", file=sys.stderr)
        return EXIT_OK

    if args.cmd in ("l", "g", "s"):
        if args.cmd == "l":
            lines = state.aliases.list_lines()
        elif args.cmd == "g":
            lines = [state.aliases.get(args.alias)]
        else:
            lines = state.aliases.search(args.regexp)
        for line in lines:
            print(line)
        return EXIT_OK

    if args.cmd == "h":
        if args.index is None:
            for line in state.history.lines():
                print(line)
            return EXIT_OK
        return emit(Orchestrator(state, fs).replay(args.index), args.execute)

    mode = RenderMode.DAEMON if args.daemon else RenderMode.DIRECT
    orchestrator = Orchestrator(state, fs, args.new, mode, args.debug_init)
    return emit(orchestrator.open(args.files), args.execute)


def main(argv: Optional[list[str]] = None) -> int:
    """Run the main entry point."""
    parser = create_parser()
    args = parser.parse_args(normalize_argv(sys.argv[1:] if argv is None else argv))

    if args.about:
        print(f"emacs-shortcuts {__version__} ({__license__})\nState:   {state_path(args.state)}")
        return EXIT_OK

    try:
        path = state_path(args.state)
        state = load_state(path)
        rc = run_command(args, state, LocalFileSystem())
        if state.changed:
            save_state(path, state)
        return rc

    except EmacsShortcutsError as e:
        print(f"Error: {e}", file=sys.stderr)
        return e.exit_code
    except KeyboardInterrupt:
        print("\nCancelled by user", file=sys.stderr)
        return EXIT_USER_ERROR
    except Exception as e:
        print(f"Unexpected error: {e}", file=sys.stderr)
        return EXIT_USER_ERROR


def cli_entrypoint() -> None:
    """Console entry point (kept tiny so tests can patch sys.exit)."""
    sys.exit(main())


if __name__ == "__main__":
    cli_entrypoint()
