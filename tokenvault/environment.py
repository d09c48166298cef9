"""
Environment Materialization — Expose decrypted tokens to a shell.

Two channels:
- ``subshell_environment()`` builds the environment of a child shell;
  plaintext never touches disk.
- ``write_environment_file()`` writes ``export NAME='value'`` lines to a
  side-channel file that a shell wrapper function sources and deletes.

Security Note:
    The side-channel file is the one place decrypted values reach disk.
    It is created with mode 0600 (never chmod-ed afterwards) and removed
    if anything goes wrong while it is written. Never log its contents.
"""
import os
import re
import shlex
import signal
import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from collections.abc import Iterator, Mapping
from typing import Optional, Union

from .exceptions import StoreIOError

logger = logging.getLogger("tokenvault.vault")

_ENV_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

_TERMINATING_SIGNALS = tuple(
    getattr(signal, name) for name in ("SIGTERM", "SIGHUP") if hasattr(signal, name)
)

PathLike = Union[str, Path]


def is_valid_env_name(name: str) -> bool:
    return bool(_ENV_NAME_PATTERN.match(name))


def _exportable(values: Mapping[str, str]) -> dict[str, str]:
    exportable = {}
    for name in sorted(values):
        if not is_valid_env_name(name):
            logger.warning(
                "Skipping token '%s': not a valid environment variable name",
                name,
            )
            continue
        exportable[name] = values[name]
    return exportable


def exportable_names(values: Mapping[str, str]) -> list[str]:
    """Names that will be exported, sorted; invalid identifiers are skipped."""
    return list(_exportable(values))


def render_environment(values: Mapping[str, str]) -> str:
    """Render tokens as POSIX shell export statements.

    Args:
        values: Decrypted name → value mapping.

    Returns:
        One ``export NAME=<quoted value>`` line per exportable token.
    """
    lines = [
        f"export {name}={shlex.quote(value)}"
        for name, value in _exportable(values).items()
    ]
    return "".join(f"{line}\n" for line in lines)


def subshell_environment(
    values: Mapping[str, str], base: Optional[Mapping[str, str]] = None,
) -> dict[str, str]:
    """Environment for a child shell: ``base`` (default os.environ) + tokens."""
    env = dict(os.environ if base is None else base)
    env.update(_exportable(values))
    return env


def remove_environment_file(path: PathLike) -> bool:
    """Best-effort unlink of the side-channel file.

    Returns:
        True if a file was removed.
    """
    try:
        os.unlink(path)
    except FileNotFoundError:
        return False
    except OSError as err:
        logger.error("Could not remove environment file %s: %s", path, err)
        return False
    return True


def write_environment_file(values: Mapping[str, str], path: PathLike) -> Path:
    """Write export statements to ``path`` with owner-only permissions.

    A stale file left at ``path`` by an earlier run is removed first. The
    new file is created exclusively with mode 0600.

    Args:
        values: Decrypted name → value mapping.
        path: Side-channel file location.

    Returns:
        Path of the written file.

    Raises:
        StoreIOError: If the file cannot be created or written.
    """
    path = Path(path)
    flags = os.O_WRONLY | os.O_CREAT | os.O_EXCL | getattr(os, "O_NOFOLLOW", 0)
    try:
        path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        if remove_environment_file(path):
            logger.warning("Removed stale environment file %s", path)
        fd = os.open(path, flags, 0o600)
    except OSError as err:
        raise StoreIOError(path, err) from err
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(render_environment(values))
            fh.flush()
            os.fsync(fh.fileno())
    except BaseException as exc:
        remove_environment_file(path)
        if isinstance(exc, OSError):
            raise StoreIOError(path, exc) from exc
        raise
    logger.debug("Wrote environment file %s", path)
    return path


def _exit_on_signal(signum, frame):
    raise SystemExit(128 + signum)


@contextmanager
def _signals_as_exit() -> Iterator[None]:
    """Turn SIGTERM/SIGHUP into SystemExit so cleanup handlers run.

    Handlers can only be installed from the main thread; elsewhere this is
    a no-op.
    """
    if threading.current_thread() is not threading.main_thread():
        yield
        return
    previous = {}
    for signum in _TERMINATING_SIGNALS:
        previous[signum] = signal.signal(signum, _exit_on_signal)
    try:
        yield
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, signal.SIG_DFL if handler is None else handler)


@contextmanager
def guarded_environment_file(
    values: Mapping[str, str], path: PathLike,
) -> Iterator[Path]:
    """Write the side-channel file and remove it if the block fails.

    On normal exit the file is left for the shell wrapper, which deletes
    it after sourcing. On any exception, including KeyboardInterrupt, or
    on SIGTERM/SIGHUP while the guard is active, the file is removed
    before the process goes on to exit.
    """
    with _signals_as_exit():
        written = write_environment_file(values, path)
        try:
            yield written
        except BaseException:
            remove_environment_file(written)
            raise


def shell_wrapper(
    env_path: PathLike,
    program: str = "tokenvault",
    function: str = "tokenvault_env",
) -> str:
    """POSIX shell function that loads tokens into the calling shell.

    The function runs ``<program> env``, sources the side-channel file on
    success and removes it unconditionally, even when the command failed.
    A trap removes it as well when the shell is interrupted in between.
    """
    quoted = shlex.quote(str(env_path))
    cleanup = shlex.quote(f"rm -f {quoted}")
    return (
        f"{function}() {{\n"
        f"    trap {cleanup} INT TERM HUP\n"
        f"    command {shlex.quote(program)} env \"$@\"\n"
        f"    __tv_status=$?\n"
        f"    if [ \"$__tv_status\" -eq 0 ] && [ -f {quoted} ]; then\n"
        f"        . {quoted}\n"
        f"    fi\n"
        f"    rm -f {quoted}\n"
        f"    trap - INT TERM HUP\n"
        f"    return \"$__tv_status\"\n"
        f"}}\n"
    )
