# cli.py
import asyncio
import logging
import sys

import click

from s3_gateway import __version__
from s3_gateway.config.settings import ConfigurationError, LOG_LEVELS, load_settings
from s3_gateway.lifecycle import GatewayLifecycle

# Configure logging
logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def configure_logging(level: str) -> None:
    """Configure root logging once for the process."""
    logging.basicConfig(
        level=LOG_LEVELS.get((level or "info").lower(), logging.INFO),
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
    )


@click.group()
@click.version_option(__version__, prog_name="s3-gateway")
def cli():
    """Read-only HTTP gateway for an S3 bucket"""
    pass


@cli.command()
@click.option("--bucket", envvar="BUCKET", help="Bucket to expose (or set BUCKET)")
@click.option("--port", envvar="PORT", type=int, help="Listen port (or set PORT)")
@click.option("--host", envvar="HOST", default=None, help="Listen address (default 0.0.0.0)")
@click.option("--log-level", envvar="LOG_LEVEL", default="info", show_default=True,
              type=click.Choice(sorted(LOG_LEVELS), case_sensitive=False),
              help="Logging verbosity")
def serve(bucket, port, host, log_level):
    """Serve the bucket over HTTP until SIGTERM/SIGINT"""
    configure_logging(log_level)

    overrides = {"log_level": log_level}
    if bucket:
        overrides["bucket"] = bucket
    if port:
        overrides["port"] = port
    if host:
        overrides["host"] = host

    try:
        settings = load_settings(**overrides)
    except ConfigurationError as e:
        logger.error(str(e))
        sys.exit(1)

    exit_code = asyncio.run(GatewayLifecycle(settings=settings).run())
    sys.exit(exit_code)


@cli.command()
def show_config():
    """Show current configuration"""
    try:
        settings = load_settings()
    except ConfigurationError as e:
        raise click.ClickException(str(e))

    click.echo("Current Configuration:")
    for name, value in settings.describe().items():
        click.echo(f"  {name}: {value}")


def main():
    cli()


if __name__ == "__main__":
    main()
