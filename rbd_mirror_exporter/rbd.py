import logging
import subprocess
import time


class RbdError(Exception):
    """Base class for failures invoking the rbd tool."""


class RbdCommandError(RbdError):
    def __init__(self, args, returncode: int | None, stderr: str = ""):
        self.cmd = list(args)
        self.returncode = returncode
        self.stderr = stderr
        if returncode is None:
            msg = f"rbd {' '.join(self.cmd)}: could not start"
        else:
            msg = f"rbd {' '.join(self.cmd)}: exit status {returncode}"
        if stderr:
            msg = f"{msg}: {stderr}"
        super().__init__(msg)


class RbdTimeoutError(RbdError):
    pass


class RbdClient:
    """Runs one synchronous rbd command per call and returns its raw stdout.

    Pure transport: no retries, no caching, no JSON validation. All calls of
    one scrape share a deadline (a ``time.monotonic()`` value); each process
    gets whatever time is left of it.
    """

    def __init__(self, binary: str = "rbd", cluster: str | None = None, debug: bool = False):
        self.binary = binary
        self.cluster = cluster
        self.debug = debug

    def command(self, args) -> list[str]:
        cmd = [self.binary]
        if self.cluster:
            cmd += ["--cluster", self.cluster]
        return cmd + list(args)

    def run(self, args, deadline: float | None = None) -> bytes:
        cmd = self.command(args)
        timeout = None
        if deadline is not None:
            timeout = deadline - time.monotonic()
            if timeout <= 0:
                raise RbdTimeoutError(f"scrape deadline exceeded before: {' '.join(cmd)}")

        if self.debug:
            logging.debug("run: %s (timeout=%s)", " ".join(cmd), timeout)
        try:
            proc = subprocess.run(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            if self.debug:
                logging.debug("rbd timed out after %.1fs: %s", e.timeout, " ".join(cmd))
            raise RbdTimeoutError(f"timed out after {e.timeout:.1f}s: {' '.join(cmd)}") from e
        except OSError as e:
            if self.debug:
                logging.debug("rbd could not start: %s", e)
            raise RbdCommandError(cmd[1:], None, str(e)) from e

        if proc.returncode != 0:
            stderr = (proc.stderr or b"").decode("utf-8", errors="replace").strip()
            if self.debug:
                logging.debug("rbd error: exit status %d; stderr: %s", proc.returncode, stderr)
            raise RbdCommandError(cmd[1:], proc.returncode, stderr)
        return proc.stdout


def pool_status_args(pool: str) -> list[str]:
    return ["mirror", "pool", "status", pool, "--verbose", "--format", "json"]


def image_status_args(pool: str, image: str) -> list[str]:
    return ["mirror", "image", "status", f"{pool}/{image}", "--format", "json"]
