"""treesig command line interface."""

from __future__ import annotations

import logging
import sys
import traceback
from pathlib import Path

import click

from treesig import __version__
from treesig.config import TreeSigSettings, load_settings
from treesig.keys import KEY_ALGORITHMS, default_public_path, generate_keypair
from treesig.walker import WalkReport, install_paths, sign_paths, verify_paths


def handle_error(error: Exception, debug: bool) -> None:
    """Print the error (or its traceback in debug mode) and exit 1."""
    if debug:
        traceback.print_exc()
    else:
        click.echo(f"Error: {error}", err=True)
    sys.exit(1)


def configure_logging(verbose: bool, debug: bool) -> None:
    level = logging.WARNING
    if verbose:
        level = logging.INFO
    if debug:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(message)s", stream=sys.stderr)


def tree_options(func):
    """Options shared by every tree command."""
    options = [
        click.option('--recursive', '-r', is_flag=True, help='Recurse into directories'),
        click.option('--relative-to', type=click.Path(path_type=Path), help='Make signed paths relative to this directory'),
        click.option('--path-prefix', help='Only accept paths under this prefix'),
        click.option('--report', type=click.Path(path_type=Path), help='Write a JSON walk report to this file'),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def public_key_options(func):
    func = click.option(
        '--public-key-dir',
        multiple=True,
        type=click.Path(path_type=Path),
        help='Directory of trusted public keys (can be used multiple times)',
    )(func)
    func = click.option(
        '--public-key',
        multiple=True,
        type=click.Path(path_type=Path),
        help='Trusted public key file (can be used multiple times)',
    )(func)
    return func


def _settings(ctx: click.Context, **overrides) -> TreeSigSettings:
    settings = load_settings(ctx.obj.get('config'))
    for name in ('relative_to', 'private_key'):
        if overrides.get(name) is not None:
            overrides[name] = str(overrides[name])
    for name in ('public_keys', 'public_key_dirs'):
        if overrides.get(name) is not None:
            overrides[name] = [str(p) for p in overrides[name]]
    return settings.with_overrides(**overrides)


def _finish(ok: bool, report: WalkReport, report_path: Path | None) -> None:
    if report_path:
        report.write_json(report_path)
    if report.failures:
        click.echo(f"{len(report.failures)} file(s) failed", err=True)
    if not ok:
        sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name="treesig")
@click.option('--config', '-c', type=click.Path(exists=True, path_type=Path), help='YAML config file')
@click.option('--verbose', '-v', is_flag=True, help='Report every processed file')
@click.option('--debug', is_flag=True, help='Enable debug output (show full tracebacks)')
@click.pass_context
def cli(ctx: click.Context, config: Path | None, verbose: bool, debug: bool):
    """treesig - sign and verify relocatable file trees."""
    ctx.ensure_object(dict)
    ctx.obj['config'] = str(config) if config else None
    ctx.obj['debug'] = debug
    configure_logging(verbose, debug)


@cli.command()
@click.argument('paths', nargs=-1, required=True, type=click.Path(path_type=Path))
@click.option('--key', '-k', type=click.Path(path_type=Path), help='Private key (PEM)')
@click.option('--force', '-f', is_flag=True, help='Overwrite existing signatures')
@tree_options
@click.pass_context
def sign(
    ctx: click.Context,
    paths: tuple[Path, ...],
    key: Path | None,
    force: bool,
    recursive: bool,
    relative_to: Path | None,
    path_prefix: str | None,
    report: Path | None,
):
    """Write a .sig file next to every file and symlink in PATHS.

    Examples:
      treesig sign --key signing.pem file.txt
      treesig sign --key signing.pem -r ./tree
      treesig sign --key signing.pem -r --relative-to /opt ./opt/app
    """
    debug = ctx.obj.get('debug', False)
    walk_report = WalkReport()
    try:
        settings = _settings(
            ctx,
            private_key=key,
            force=force or None,
            recursive=recursive or None,
            relative_to=relative_to,
            path_prefix=path_prefix,
        )
        config = settings.resolve(need_private_key=True)
        ok = sign_paths([str(p) for p in paths], config, walk_report)
    except Exception as e:
        handle_error(e, debug)
        return

    _finish(ok, walk_report, report)


@cli.command()
@click.argument('paths', nargs=-1, required=True, type=click.Path(path_type=Path))
@public_key_options
@tree_options
@click.pass_context
def verify(
    ctx: click.Context,
    paths: tuple[Path, ...],
    public_key: tuple[Path, ...],
    public_key_dir: tuple[Path, ...],
    recursive: bool,
    relative_to: Path | None,
    path_prefix: str | None,
    report: Path | None,
):
    """Check the .sig file of every file and symlink in PATHS.

    Examples:
      treesig verify --public-key signing.pub file.txt
      treesig verify --public-key-dir /etc/treesig/trusted.d -r ./tree
    """
    debug = ctx.obj.get('debug', False)
    walk_report = WalkReport()
    try:
        settings = _settings(
            ctx,
            public_keys=public_key,
            public_key_dirs=public_key_dir,
            recursive=recursive or None,
            relative_to=relative_to,
            path_prefix=path_prefix,
        )
        config = settings.resolve()
        ok = verify_paths([str(p) for p in paths], config, walk_report)
    except Exception as e:
        handle_error(e, debug)
        return

    if ok:
        click.echo(f"Verified {walk_report.verified} file(s)")
    _finish(ok, walk_report, report)


@cli.command()
@click.argument('paths', nargs=-1, required=True, type=click.Path(path_type=Path))
@click.option('--dest', '-d', required=True, type=click.Path(path_type=Path), help='Destination directory')
@click.option('--force', '-f', is_flag=True, help='Replace existing destination files')
@public_key_options
@tree_options
@click.pass_context
def install(
    ctx: click.Context,
    paths: tuple[Path, ...],
    dest: Path,
    force: bool,
    public_key: tuple[Path, ...],
    public_key_dir: tuple[Path, ...],
    recursive: bool,
    relative_to: Path | None,
    path_prefix: str | None,
    report: Path | None,
):
    """Verify PATHS and copy every valid file into DEST.

    Files are copied from the same open handle that was verified, at their
    path relative to the relative root, together with their .sig files.
    """
    debug = ctx.obj.get('debug', False)
    walk_report = WalkReport()
    try:
        settings = _settings(
            ctx,
            public_keys=public_key,
            public_key_dirs=public_key_dir,
            force=force or None,
            recursive=recursive or None,
            relative_to=relative_to,
            path_prefix=path_prefix,
        )
        config = settings.resolve()
        ok = install_paths([str(p) for p in paths], str(dest), config, walk_report)
    except Exception as e:
        handle_error(e, debug)
        return

    if ok:
        click.echo(f"Installed {walk_report.installed} file(s) into {dest}")
    _finish(ok, walk_report, report)


@cli.command()
@click.option('--out', '-o', required=True, type=click.Path(path_type=Path), help='Private key output path')
@click.option('--public-out', type=click.Path(path_type=Path), help='Public key output path (default: OUT with .pub suffix)')
@click.option('--algorithm', '-a', type=click.Choice(KEY_ALGORITHMS), default='ed25519', help='Key algorithm')
@click.pass_context
def keygen(ctx: click.Context, out: Path, public_out: Path | None, algorithm: str):
    """Generate a signing key pair."""
    debug = ctx.obj.get('debug', False)
    try:
        public_out = public_out or Path(default_public_path(str(out)))
        generate_keypair(str(out), str(public_out), algorithm)
    except Exception as e:
        handle_error(e, debug)
        return

    click.echo(f"Private key: {out}")
    click.echo(f"Public key: {public_out}")


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
