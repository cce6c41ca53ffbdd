import logging
import os
import re
import shlex
import subprocess
import threading
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Iterator, Mapping, Optional

import pexpect

from askpass import ASKPASS_PATH
from errors import (
    BrewError,
    CommandFailed,
    LaunchFailure,
    OutputDecodeError,
    PermissionDenied,
    Timeout,
    ToolNotFound,
)

logger = logging.getLogger(__name__)

BREW_CANDIDATES = (
    "/opt/homebrew/bin/brew",
    "/usr/local/bin/brew",
    "/usr/bin/brew",
)


def locate_brew(candidates: Iterable[str] = BREW_CANDIDATES) -> str:
    """Return the first existing brew executable, or the first candidate as a guess."""

    candidates = list(candidates) or list(BREW_CANDIDATES)
    for path in candidates:
        if os.path.exists(path):
            return path
    return candidates[0]


def brew_environment(extra: Optional[Mapping[str, str]] = None) -> dict[str, str]:
    env = os.environ.copy()
    env["HOMEBREW_NO_AUTO_UPDATE"] = "1"
    env["HOMEBREW_NO_ANALYTICS"] = "1"
    env["HOMEBREW_COLOR"] = "0"
    env["NO_COLOR"] = "1"
    env["SUDO_ASKPASS"] = str(ASKPASS_PATH)
    env["DISPLAY"] = ":0"
    if extra:
        env.update(extra)
    return env


def _format_cmd(argv: Iterable[str]) -> str:
    return shlex.join(list(argv))


@dataclass(frozen=True)
class CommandRequest:
    arguments: tuple[str, ...]
    timeout: float = 30.0
    env_overrides: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "arguments", tuple(self.arguments))
        object.__setattr__(self, "env_overrides", MappingProxyType(dict(self.env_overrides)))


@dataclass(frozen=True)
class CommandResult:
    output: Optional[str] = None
    error: Optional[BrewError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> str:
        if self.error is not None:
            raise self.error
        return self.output or ""


class CompletionGate:
    """Single-assignment slot: the first resolve() wins, later ones are ignored."""

    def __init__(self):
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._result: Optional[CommandResult] = None

    def resolve(self, result: CommandResult) -> bool:
        with self._lock:
            if self._done.is_set():
                return False
            self._result = result
            self._done.set()
        return True

    @property
    def resolved(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: Optional[float] = None) -> Optional[CommandResult]:
        self._done.wait(timeout)
        return self._result


class CaptureBuffer:
    """Byte buffers for stdout and stderr shared by the two reader threads."""

    STREAMS = ("stdout", "stderr")

    def __init__(self):
        self._lock = threading.Lock()
        self._data = {name: bytearray() for name in self.STREAMS}

    def append(self, stream: str, chunk: bytes):
        with self._lock:
            self._data[stream] += chunk

    def value(self, stream: str) -> bytes:
        with self._lock:
            return bytes(self._data[stream])


class ProcessRunner:
    """Runs one brew command to completion and captures its output."""

    READ_SIZE = 65536
    # Output still buffered by a grandchild after exit is dropped after this long.
    DRAIN_TIMEOUT = 5.0

    def __init__(self, brew_path: Optional[str] = None, env_overrides: Optional[Mapping[str, str]] = None):
        self.brew_path = brew_path or locate_brew()
        self._env_overrides = dict(env_overrides or {})

    # ------------------------------------------------------------------
    # public API
    # ------------------------------------------------------------------
    def run(self, arguments: Iterable[str], timeout: float = 30.0, env: Optional[Mapping[str, str]] = None) -> str:
        """Run brew with *arguments* and return its stdout, raising a BrewError on failure."""

        arguments = list(arguments)
        if not arguments:
            return ""
        return self.execute(CommandRequest(tuple(arguments), timeout, env or {})).unwrap()

    def execute(self, request: CommandRequest) -> CommandResult:
        gate = CompletionGate()
        argv = [self.brew_path, *request.arguments]
        env = brew_environment({**self._env_overrides, **request.env_overrides})

        logger.debug("Executing %s", _format_cmd(argv))
        try:
            proc = subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=env,
            )
        except PermissionError:
            gate.resolve(CommandResult(error=PermissionDenied()))
        except FileNotFoundError:
            gate.resolve(CommandResult(error=ToolNotFound(
                f"Homebrew not found at {self.brew_path}. Please ensure it is installed."
            )))
        except OSError as exc:
            gate.resolve(CommandResult(error=LaunchFailure(f"Launch failed: {exc}")))
        else:
            self._supervise(proc, request, gate)

        return gate.wait()

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------
    def _supervise(self, proc: subprocess.Popen, request: CommandRequest, gate: CompletionGate):
        buffer = CaptureBuffer()
        readers = [
            threading.Thread(
                target=self._pump,
                args=(proc.stdout, "stdout", buffer),
                name=f"brew-stdout-{proc.pid}",
                daemon=True,
            ),
            threading.Thread(
                target=self._pump,
                args=(proc.stderr, "stderr", buffer),
                name=f"brew-stderr-{proc.pid}",
                daemon=True,
            ),
        ]
        for reader in readers:
            reader.start()

        watchdog = threading.Timer(request.timeout, self._on_timeout, args=(proc, request, gate))
        watchdog.daemon = True
        watchdog.start()

        waiter = threading.Thread(
            target=self._wait_for_exit,
            args=(proc, readers, buffer, watchdog, request, gate),
            name=f"brew-wait-{proc.pid}",
            daemon=True,
        )
        waiter.start()

    def _pump(self, stream, name: str, buffer: CaptureBuffer):
        try:
            while True:
                chunk = stream.read1(self.READ_SIZE)
                if not chunk:
                    break
                buffer.append(name, chunk)
        except (OSError, ValueError) as exc:
            logger.debug("Reader for %s stopped: %s", name, exc)
        finally:
            stream.close()

    def _on_timeout(self, proc: subprocess.Popen, request: CommandRequest, gate: CompletionGate):
        # Also fires while the output is still draining after exit.
        if proc.poll() is None:
            try:
                proc.kill()
            except OSError as exc:
                logger.debug("Could not kill pid %s: %s", proc.pid, exc)
        if gate.resolve(CommandResult(error=Timeout())):
            logger.warning("brew %s timed out after %ss", " ".join(request.arguments), request.timeout)

    def _wait_for_exit(self, proc, readers, buffer: CaptureBuffer, watchdog: threading.Timer,
                       request: CommandRequest, gate: CompletionGate):
        returncode = proc.wait()
        # A descendant may keep the pipes open; bound the whole drain.
        deadline = time.monotonic() + self.DRAIN_TIMEOUT
        for reader in readers:
            reader.join(max(0.0, deadline - time.monotonic()))
        watchdog.cancel()

        if returncode != 0:
            detail = buffer.value("stderr").decode("utf-8", errors="replace").strip()
            result = CommandResult(error=CommandFailed(detail or f"Exit code {returncode}"))
        else:
            try:
                result = CommandResult(output=buffer.value("stdout").decode("utf-8"))
            except UnicodeDecodeError:
                result = CommandResult(error=OutputDecodeError())

        if not gate.resolve(result):
            logger.debug(
                "Discarding exit status %s of brew %s: already resolved",
                returncode,
                " ".join(request.arguments),
            )


class ActionStream:
    """Live output of one brew action; iterate once to receive text chunks."""

    READ_SIZE = 4096
    TERMINATE_GRACE = 3.0

    def __init__(self, argv: list[str], env: dict[str, str]):
        self.argv = list(argv)
        self._env = env
        self.exit_status: Optional[int] = None
        self._chunks = self._read_chunks()

    def __iter__(self) -> Iterator[str]:
        return self

    def __next__(self) -> str:
        return next(self._chunks)

    def close(self):
        """Stop consuming; a still running process is terminated."""
        self._chunks.close()

    def _read_chunks(self) -> Iterator[str]:
        try:
            proc = pexpect.spawn(
                self.argv[0],
                self.argv[1:],
                env=self._env,
                encoding="utf-8",
                codec_errors="replace",
                echo=False,
                timeout=None,
            )
        except pexpect.ExceptionPexpect as exc:
            logger.error("Could not start %s: %s", _format_cmd(self.argv), exc)
            self.exit_status = 127
            yield f"Error: {exc}\n"
            return

        proc.delaybeforesend = None
        reached_eof = False
        try:
            while True:
                try:
                    chunk = proc.read_nonblocking(self.READ_SIZE, timeout=None)
                except (pexpect.EOF, OSError):
                    reached_eof = True
                    break
                text = self._normalize(chunk)
                if text:
                    yield text
        finally:
            self.exit_status = self._finish(proc, reached_eof)

    def _finish(self, proc: pexpect.spawn, reached_eof: bool) -> int:
        try:
            if reached_eof:
                proc.wait()
                proc.close()
            else:
                logger.info("Output of %s abandoned, terminating", _format_cmd(self.argv))
                self._terminate(proc)
                proc.close(force=True)
        except pexpect.ExceptionPexpect as exc:
            logger.debug("Error while closing %s: %s", _format_cmd(self.argv), exc)

        if proc.exitstatus is not None:
            return proc.exitstatus
        if proc.signalstatus is not None:
            return -proc.signalstatus
        return 0

    def _terminate(self, proc: pexpect.spawn):
        if not proc.isalive():
            return
        proc.terminate(force=False)

        deadline = time.monotonic() + self.TERMINATE_GRACE
        while proc.isalive() and time.monotonic() < deadline:
            time.sleep(0.1)

        if proc.isalive():
            proc.terminate(force=True)

    @staticmethod
    def _normalize(text: str) -> str:
        return _strip_ansi(text).replace("\r\n", "\n")


class StreamingExecutor:
    """Starts brew actions whose output is consumed live (install, upgrade, ...)."""

    def __init__(self, brew_path: Optional[str] = None, env_overrides: Optional[Mapping[str, str]] = None):
        self.brew_path = brew_path or locate_brew()
        self._env_overrides = dict(env_overrides or {})

    def stream(self, arguments: Iterable[str]) -> ActionStream:
        argv = [self.brew_path, *arguments]
        env = brew_environment(self._env_overrides)
        # A dumb terminal keeps brew from drawing progress bars with cursor movement.
        env["TERM"] = "dumb"
        logger.info("Running %s", _format_cmd(argv))
        return ActionStream(argv, env)


def run_shell(command: str, timeout: float = 120.0) -> str:
    """Run *command* through a shell and return its combined output."""

    shell = "/bin/zsh" if os.path.exists("/bin/zsh") else "/bin/sh"
    logger.debug("Executing shell command: %s", command)
    try:
        proc = subprocess.run(
            [shell, "-c", command],
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            errors="replace",
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired:
        logger.warning("Shell command timed out after %ss: %s", timeout, command)
        return ""
    except OSError as exc:
        logger.warning("Shell command could not be started: %s", exc)
        return ""
    return proc.stdout


def _strip_ansi(text: str) -> str:
    """Return *text* with ANSI escape sequences removed."""

    if "\x1b" not in text:
        return text

    # Match CSI, OSC, and other ANSI escape sequences.
    csi = r"\x1B[@-_][0-?]*[ -/]*[@-~]"
    osc = r"\x1B\][^\x07\x1B]*(\x07|\x1B\\)"
    pattern = f"({csi}|{osc})"
    return re.sub(pattern, "", text)
