# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
S3PITR Command Runner - Structured subprocess invocation.

Every external tool (aws, xtrabackup, mysqlbinlog, mysql, rsync, chown)
is started through this module. Commands are argv vectors, never shell
strings, and each one is bounded by an explicit timeout. A timeout kills
the process and is reported as a failure; nothing here retries.

Arguments and environment values may be wrapped in Secret. A Secret
renders as ``***`` everywhere except at the moment the process is
spawned, so logged command lines are redacted by construction.
"""

import asyncio
import os
import shlex
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Protocol, Tuple, Type, Union

import structlog

from s3pitr.exceptions import PITRError

logger = structlog.get_logger()

REDACTED = "***"

# Exit code reported when the executable itself cannot be started
EXIT_NOT_EXECUTABLE = 127


class Secret:
    """A string value that never renders itself."""

    __slots__ = ("_value",)

    def __init__(self, value: str):
        self._value = value

    def reveal(self) -> str:
        return self._value

    def __str__(self) -> str:
        return REDACTED

    def __repr__(self) -> str:
        return f"Secret({REDACTED!r})"

    def __bool__(self) -> bool:
        return bool(self._value)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Secret) and other._value == self._value

    def __hash__(self) -> int:
        return hash(("Secret", self._value))

    def __deepcopy__(self, memo: dict) -> "Secret":
        return self


Arg = Union[str, Path, Secret]


def _reveal(value: Arg) -> str:
    if isinstance(value, Secret):
        return value.reveal()
    return str(value)


def _redact(value: Arg) -> str:
    if isinstance(value, Secret):
        return REDACTED
    return str(value)


@dataclass(frozen=True)
class CommandSpec:
    """An argv vector plus its timeout and extra environment."""

    argv: Tuple[Arg, ...]
    timeout: float
    env: Dict[str, Arg] | None = None

    @classmethod
    def of(cls, *argv: Arg, timeout: float, env: Dict[str, Arg] | None = None) -> "CommandSpec":
        return cls(argv=tuple(argv), timeout=timeout, env=env)

    @property
    def program(self) -> str:
        return Path(_redact(self.argv[0])).name if self.argv else ""

    def display(self) -> str:
        """Shell-quoted command line with every Secret redacted."""
        return shlex.join(_redact(a) for a in self.argv)

    def resolve(self) -> list[str]:
        """The real argv handed to the operating system."""
        return [_reveal(a) for a in self.argv]

    def resolve_env(self) -> Dict[str, str] | None:
        if not self.env:
            return None
        merged = dict(os.environ)
        merged.update({k: _reveal(v) for k, v in self.env.items()})
        return merged


@dataclass
class CommandResult:
    """Outcome of a command or a pipe of two commands."""

    command: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0 and not self.timed_out

    @property
    def failed(self) -> bool:
        return not self.succeeded


class CommandRunner(Protocol):
    """Anything that can execute a CommandSpec."""

    async def run(self, spec: CommandSpec) -> CommandResult:
        ...

    async def pipe(self, producer: CommandSpec, consumer: CommandSpec) -> CommandResult:
        ...


class SubprocessRunner:
    """CommandRunner backed by asyncio subprocesses."""

    async def run(self, spec: CommandSpec) -> CommandResult:
        command = spec.display()
        start = time.monotonic()

        logger.debug("command_started", command=command, timeout=spec.timeout)

        try:
            proc = await asyncio.create_subprocess_exec(
                *spec.resolve(),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=spec.resolve_env(),
            )
        except OSError as e:
            return CommandResult(
                command=command,
                exit_code=EXIT_NOT_EXECUTABLE,
                stderr=str(e),
                duration_seconds=time.monotonic() - start,
            )

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=spec.timeout)
        except asyncio.TimeoutError:
            await _kill(proc)
            return CommandResult(
                command=command,
                exit_code=proc.returncode if proc.returncode is not None else -9,
                stderr=f"Command timed out after {spec.timeout}s",
                timed_out=True,
                duration_seconds=time.monotonic() - start,
            )

        return CommandResult(
            command=command,
            exit_code=proc.returncode,
            stdout=_decode(stdout),
            stderr=_decode(stderr),
            duration_seconds=time.monotonic() - start,
        )

    async def pipe(self, producer: CommandSpec, consumer: CommandSpec) -> CommandResult:
        """
        Run ``producer | consumer``.

        The pipe fails when either side exits non-zero. Stderr of both
        sides is returned, producer first. The longer of the two
        timeouts bounds the whole pipe.
        """
        command = f"{producer.display()} | {consumer.display()}"
        timeout = max(producer.timeout, consumer.timeout)
        start = time.monotonic()

        logger.debug("pipe_started", command=command, timeout=timeout)

        read_fd, write_fd = os.pipe()
        try:
            try:
                first = await asyncio.create_subprocess_exec(
                    *producer.resolve(),
                    stdout=write_fd,
                    stderr=asyncio.subprocess.PIPE,
                    env=producer.resolve_env(),
                )
            finally:
                os.close(write_fd)

            try:
                second = await asyncio.create_subprocess_exec(
                    *consumer.resolve(),
                    stdin=read_fd,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    env=consumer.resolve_env(),
                )
            except OSError:
                await _kill(first)
                raise
        except OSError as e:
            return CommandResult(
                command=command,
                exit_code=EXIT_NOT_EXECUTABLE,
                stderr=str(e),
                duration_seconds=time.monotonic() - start,
            )
        finally:
            os.close(read_fd)

        try:
            (_, first_err), (out, second_err) = await asyncio.wait_for(
                asyncio.gather(first.communicate(), second.communicate()),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            await _kill(first)
            await _kill(second)
            return CommandResult(
                command=command,
                exit_code=-9,
                stderr=f"Command timed out after {timeout}s",
                timed_out=True,
                duration_seconds=time.monotonic() - start,
            )

        exit_code = first.returncode or second.returncode
        stderr = "\n".join(s for s in (_decode(first_err), _decode(second_err)) if s)

        return CommandResult(
            command=command,
            exit_code=exit_code,
            stdout=_decode(out),
            stderr=stderr,
            duration_seconds=time.monotonic() - start,
        )


async def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass
        await proc.wait()


def _decode(data: bytes | None) -> str:
    if not data:
        return ""
    return data.decode("utf-8", errors="replace").strip()


async def run_or_raise(
    runner: CommandRunner,
    spec: CommandSpec,
    error_cls: Type[PITRError],
    message: str,
) -> CommandResult:
    """
    Run a command and raise ``error_cls`` when it fails.

    The raised error carries the redacted command line, the exit code
    and the tool's stderr verbatim.
    """
    logger.info("command_executing", command=spec.display())

    result = await runner.run(spec)

    if result.stdout:
        logger.debug("command_output", program=spec.program, output=result.stdout)

    if result.failed:
        logger.error(
            "command_failed",
            command=result.command,
            exit_code=result.exit_code,
            timed_out=result.timed_out,
            stderr=result.stderr,
        )
        raise error_cls(
            f"{message}: {result.stderr}",
            details={
                "command": result.command,
                "exit_code": result.exit_code,
                "stderr": result.stderr,
            },
        )

    logger.info("command_succeeded", program=spec.program, duration=round(result.duration_seconds, 2))
    return result

