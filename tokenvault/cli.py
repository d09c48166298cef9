"""
Tokenvault CLI - Command-line interface for the token vault

Usage:
    tokenvault add github_token            # prompt for the value (masked)
    tokenvault get github_token            # print a token
    tokenvault list                        # list token names
    tokenvault delete github_token         # remove a token
    tokenvault shell                       # subshell with all tokens exported
    eval "$(tokenvault shell-init)"        # define tokenvault_env in this shell
    tokenvault migrate                     # upgrade a v1 store to v2
"""
import os
import sys
import logging
import subprocess
from pathlib import Path
from typing import Optional

import click

from .config import VaultConfig
from .environment import (
    exportable_names,
    guarded_environment_file,
    shell_wrapper,
    subshell_environment,
)
from .exceptions import TokenNotFound, VaultError
from .migration import migrate_store
from .vault import TokenVault
from .version import __version__

logger = logging.getLogger("tokenvault.cli")

_LOG_LEVELS = {0: logging.WARNING, 1: logging.INFO}


def _configure_logging(verbose: int) -> None:
    logging.basicConfig(
        level=_LOG_LEVELS.get(verbose, logging.DEBUG),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _prompt_passphrase(confirm: bool = False) -> str:
    """Read the master passphrase from the terminal without echo.

    click re-prompts on empty input, so an empty passphrase is never used.
    """
    return click.prompt(
        "Master key",
        hide_input=True,
        confirmation_prompt=confirm,
    )


def _text(value: str, what: str) -> str:
    # argv bytes that are not UTF-8 arrive surrogate-escaped
    try:
        value.encode("utf-8")
    except UnicodeEncodeError:
        raise click.BadParameter(f"{what} must be valid UTF-8 text") from None
    return value


def _validate_name(ctx: click.Context, param: click.Parameter, value: str) -> str:
    if not value:
        raise click.BadParameter("token name cannot be empty")
    return _text(value, "token name")


def _validate_value(
    ctx: click.Context, param: click.Parameter, value: Optional[str],
) -> Optional[str]:
    if value is None:
        return value
    return _text(value, "token value")


def _open_vault(ctx: click.Context) -> TokenVault:
    config: VaultConfig = ctx.obj
    return TokenVault(config=config)


def _unlock(vault: TokenVault) -> TokenVault:
    # a new store gets its passphrase typed twice
    vault.unlock(_prompt_passphrase(confirm=vault.store.empty))
    return vault


class VaultGroup(click.Group):
    """Click group that turns vault errors into messages and exit codes."""

    def invoke(self, ctx: click.Context):
        try:
            return super().invoke(ctx)
        except VaultError as err:
            logger.debug("Command failed: %s", type(err).__name__)
            click.echo(f"Error: {err}", err=True)
            ctx.exit(err.exit_code)


@click.group(cls=VaultGroup)
@click.option(
    "--home",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Vault data directory (default: $TOKENVAULT_HOME or the platform data dir).",
)
@click.option("-v", "--verbose", count=True, help="Increase log verbosity.")
@click.version_option(__version__, prog_name="tokenvault")
@click.pass_context
def cli(ctx: click.Context, home: Optional[Path], verbose: int):
    """Tokenvault - keep personal access tokens encrypted."""
    _configure_logging(verbose)
    ctx.obj = VaultConfig.from_env(home=home)


@cli.command()
@click.argument("name", callback=_validate_name)
@click.argument("value", required=False, callback=_validate_value)
@click.pass_context
def add(ctx: click.Context, name: str, value: Optional[str]):
    """Add or replace the token stored under NAME."""
    vault = _unlock(_open_vault(ctx))
    if value is None:
        value = click.prompt(
            f"Token for '{name}'",
            hide_input=True,
            value_proc=lambda v: _text(v, "token value"),
        )
    replaced = vault.add(name, value)
    click.echo(f"Token '{name}' {'replaced' if replaced else 'stored'}.", err=True)


@cli.command()
@click.argument("name")
@click.pass_context
def get(ctx: click.Context, name: str):
    """Print the token stored under NAME."""
    vault = _open_vault(ctx)
    if not vault.exists(name):
        raise TokenNotFound(name)
    _unlock(vault)
    click.echo(vault.get(name))


@cli.command(name="list")
@click.pass_context
def list_tokens(ctx: click.Context):
    """List stored token names."""
    names = _open_vault(ctx).names()
    if not names:
        click.echo("No tokens stored.", err=True)
    for name in names:
        click.echo(name)


@cli.command()
@click.argument("name")
@click.pass_context
def delete(ctx: click.Context, name: str):
    """Delete the token stored under NAME."""
    if not _open_vault(ctx).delete(name):
        raise TokenNotFound(name)
    click.echo(f"Token '{name}' deleted.", err=True)


@cli.command()
@click.pass_context
def shell(ctx: click.Context):
    """Spawn $SHELL with every token exported."""
    vault = _unlock(_open_vault(ctx))
    env = subshell_environment(vault.decrypt_all())
    program = os.environ.get("SHELL") or ("cmd.exe" if os.name == "nt" else "/bin/sh")
    click.echo(f"Starting {program} with tokens loaded; exit to leave.", err=True)
    try:
        code = subprocess.call([program], env=env)
    except OSError as err:
        raise click.ClickException(f"cannot start {program}: {err}") from err
    ctx.exit(code)


@cli.command()
@click.pass_context
def env(ctx: click.Context):
    """Write tokens to the environment file sourced by tokenvault_env."""
    config: VaultConfig = ctx.obj
    vault = _unlock(_open_vault(ctx))
    values = vault.decrypt_all()
    exported = exportable_names(values)
    with guarded_environment_file(values, config.env_path) as path:
        click.echo(
            f"Wrote {len(exported)} token(s) to {path}; the shell wrapper "
            "sources and deletes it. Variables apply to this shell only.",
            err=True,
        )


@cli.command(name="shell-init")
@click.pass_context
def shell_init(ctx: click.Context):
    """Print the tokenvault_env shell function (use with eval)."""
    config: VaultConfig = ctx.obj
    click.echo(shell_wrapper(config.env_path), nl=False)


@cli.command()
@click.pass_context
def migrate(ctx: click.Context):
    """Upgrade a legacy un-salted store to the salted format."""
    config: VaultConfig = ctx.obj
    stats = migrate_store(_prompt_passphrase(), config=config)
    if stats["migrated"]:
        click.echo(f"Migrated {stats['migrated']} token(s).", err=True)
    else:
        click.echo("Nothing to migrate.", err=True)


def main():
    cli(prog_name="tokenvault")


if __name__ == "__main__":
    main()
