import logging
import sys
from pathlib import Path

import click

from dblock.common.config import get_settings, load_config, update_settings
from dblock.errors import ConfigError, DblockError
from dblock.sync import Lock, Locker, LockBackend, Options, RedisLockBackend, SQLLockBackend
from dblock.utils.connector import is_redis_uri
from dblock.utils.logger import setup_logging

logger = logging.getLogger("dblock")


def build_backend(uri: str, table: str, debug: bool, token_size: int) -> LockBackend:
    """Pick the backend from the uri scheme: redis for redis://, SQL for anything else."""
    if is_redis_uri(uri):
        return RedisLockBackend.from_url(uri, token_size=token_size)
    backend = SQLLockBackend.from_url(uri, table=table, debug=debug, token_size=token_size)
    backend.create_schema()
    return backend


def _load_config_file(ctx, param, value):
    if value is None:
        return
    try:
        update_settings(load_config(value))
    except ConfigError as e:
        raise click.BadParameter(str(e), ctx=ctx, param=param)


def _report(lock: Lock):
    click.echo(f"token: {lock.token}")
    click.echo(f"meta: {lock.metadata}")
    click.echo(f"ttl: {lock.ttl()}ms")


@click.group()
@click.option("--config", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              is_eager=True, expose_value=False, callback=_load_config_file,
              help="TOML file overriding dblock.toml and the environment")
@click.option("--uri", default=lambda: get_settings().lock.uri,
              help="redis://host:port/db or a SQLAlchemy database url")
@click.option("--table", default=lambda: get_settings().lock.table, help="Lock table (SQL only)")
@click.option("--debug", is_flag=True, help="Log issued SQL statements")
@click.option("--log-format", type=click.Choice(["text", "json"]),
              default=lambda: get_settings().logging.format)
@click.pass_context
def cli(ctx, uri, table, debug, log_format):
    settings = get_settings()
    debug = debug or settings.lock.debug
    setup_logging(
        level="DEBUG" if debug else settings.logging.level,
        format_type=log_format,
        node_id=settings.node_id,
    )
    try:
        backend = build_backend(uri, table, debug, settings.lock.token_size)
    except DblockError as e:
        raise click.ClickException(str(e))
    ctx.obj = backend
    ctx.call_on_close(backend.close)


def key_option(f):
    return click.option("--key", default=lambda: get_settings().lock.key, help="Lock key")(f)


def meta_option(f):
    return click.option("--meta", default=lambda: get_settings().lock.meta,
                        help="Metadata stored with the lock")(f)


def ttl_option(f):
    return click.option("--ttl-ms", type=click.IntRange(min=1), default=lambda: get_settings().lock.ttl_ms,
                        help="Lock time-to-live in milliseconds")(f)


@cli.command()
@key_option
@ttl_option
@meta_option
@click.option("--token", default=lambda: get_settings().lock.token, help="Token value, random if omitted")
@click.pass_obj
def obtain(backend, key, ttl_ms, meta, token):
    """Obtain the lock and print its token."""
    try:
        lock = Locker(backend).obtain(key, ttl_ms, Options(metadata=meta, token=token or ""))
        logger.info(f"obtained {key}", extra={"lock_key": key})
        _report(lock)
    except DblockError as e:
        logger.error(f"obtain failed: {e}", extra={"lock_key": key})
        sys.exit(1)


@cli.command()
@key_option
@ttl_option
@meta_option
@click.option("--token", required=True, help="Token returned by obtain")
@click.pass_obj
def refresh(backend, key, ttl_ms, meta, token):
    """Extend a held lock with a new TTL."""
    lock = Lock(backend, key, token, meta)
    try:
        lock.refresh(ttl_ms)
        logger.info(f"refreshed {key}", extra={"lock_key": key})
        _report(lock)
    except DblockError as e:
        logger.error(f"refresh failed: {e}", extra={"lock_key": key})
        sys.exit(1)


@cli.command()
@key_option
@meta_option
@click.option("--token", required=True, help="Token returned by obtain")
@click.pass_obj
def release(backend, key, meta, token):
    """Release a held lock."""
    lock = Lock(backend, key, token, meta)
    try:
        lock.release()
        click.echo("released")
    except DblockError as e:
        logger.error(f"release failed: {e}", extra={"lock_key": key})
        sys.exit(1)


@cli.command()
@key_option
@click.pass_obj
def view(backend, key):
    """Show the current holder of a lock."""
    try:
        lock_view = backend.view(key)
    except DblockError as e:
        logger.error(f"view failed: {e}", extra={"lock_key": key})
        sys.exit(1)
    if lock_view is None:
        click.echo(f"{key}: not locked")
        return
    click.echo(lock_view.model_dump_json())


if __name__ == "__main__":
    cli()
