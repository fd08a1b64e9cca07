"""Run external tools with argv lists, a deadline and per-tool exit codes."""
from __future__ import annotations

import logging
import subprocess
from collections.abc import Collection, Mapping, Sequence

from ..errors import OSExecError, OSExecTimeout

LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


class CommandRunner:
    """Execute commands without a shell.

    ``ok_codes`` lists the exit statuses treated as success for one call;
    anything else raises :class:`OSExecError` when ``check`` is set. A call
    exceeding the deadline raises :class:`OSExecTimeout`. In dry-run mode
    nothing is executed and every call reports exit status 0.
    """

    def __init__(
        self,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        dry_run: bool = False,
        env: Mapping[str, str] | None = None,
    ) -> None:
        """Configure the default deadline and dry-run behaviour."""
        self.timeout = timeout
        self.dry_run = dry_run
        self.env = dict(env) if env is not None else None

    def run(
        self,
        argv: Sequence[str],
        *,
        ok_codes: Collection[int] = (0,),
        check: bool = True,
        timeout: float | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Run *argv* and return the completed process."""
        command = [str(part) for part in argv]
        if not command:
            raise ValueError("argv must not be empty")
        if self.dry_run:
            LOGGER.info("Dry run: %s", " ".join(command))
            return subprocess.CompletedProcess(command, returncode=0, stdout="", stderr="")
        LOGGER.debug("Running %s", " ".join(command))
        try:
            result = subprocess.run(  # noqa: S603, S607
                command,
                capture_output=True,
                text=True,
                check=False,
                timeout=timeout if timeout is not None else self.timeout,
                env=self.env,
            )
        except subprocess.TimeoutExpired as exc:
            raise OSExecTimeout(
                command,
                f"timed out after {exc.timeout:g}s",
            ) from exc
        except FileNotFoundError as exc:
            raise OSExecError(command, f"{command[0]} not found") from exc
        except OSError as exc:
            raise OSExecError(command, f"failed to execute: {exc}") from exc
        if check and result.returncode not in ok_codes:
            stdout = result.stdout or ""
            stderr = result.stderr or ""
            message = stderr.strip() or stdout.strip() or "no output"
            raise OSExecError(
                command,
                f"failed (exit {result.returncode}): {message}",
                returncode=result.returncode,
                output=stdout + stderr,
            )
        return result

    def succeeds(self, argv: Sequence[str], *, timeout: float | None = None) -> bool:
        """Return True when *argv* exits with status 0."""
        return self.run(argv, check=False, timeout=timeout).returncode == 0


__all__ = ["CommandRunner", "DEFAULT_TIMEOUT"]
