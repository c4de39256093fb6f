"""
azstore Command-Line Interface

Provides commands to browse and transfer data in Azure Blob, File and
Table storage, and to generate shared access signatures.
"""

import json
import logging
import sys
from pathlib import Path
from typing import Optional

import click
from pydantic import ValidationError

from azstore import __version__
from azstore.auth.sas import SharedAccessSignature
from azstore.core.client import StorageClient
from azstore.core.config_manager import ConfigManager
from azstore.core.exceptions import HTTPError, StorageError
from azstore.core.logging_config import setup_logging

logger = logging.getLogger("azstore.cli")


def _fail(message: str) -> None:
    click.echo(f"[ERROR] {message}", err=True)
    sys.exit(1)


def _client(ctx: click.Context) -> StorageClient:
    """Build the StorageClient for the current invocation, once."""
    obj = ctx.ensure_object(dict)
    if "client" in obj:
        return obj["client"]

    overrides = {}
    if obj.get("connection_string"):
        overrides["storage"] = {"storage_connection_string": obj["connection_string"]}
    if obj.get("log_level"):
        overrides["logging"] = {"level": obj["log_level"].upper()}

    try:
        config = ConfigManager().load(obj.get("config"), overrides)
    except (ValidationError, FileNotFoundError, ValueError) as e:
        _fail(f"Invalid configuration: {e}")

    setup_logging(
        level=config.logging.level,
        format_type=config.logging.format,
        log_file=config.logging.file,
        rotation_size=config.logging.rotation_size,
        rotation_count=config.logging.rotation_count,
        module_levels=config.logging.module_levels,
    )

    try:
        client = StorageClient.from_config(config)
    except StorageError as e:
        _fail(str(e))

    ctx.call_on_close(client.close)
    obj["client"] = client
    obj["app_config"] = config
    return client


@click.group()
@click.version_option(version=__version__, prog_name="azstore")
@click.option(
    "--connection-string",
    envvar="AZURE_STORAGE_CONNECTION_STRING",
    help="Storage account connection string",
)
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Path to configuration file",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    help="Logging level",
)
@click.pass_context
def cli(ctx, connection_string: Optional[str], config: Optional[Path], log_level: Optional[str]):
    """
    azstore - Azure Storage client

    Work with blobs, file shares and tables from the command line.
    """
    ctx.ensure_object(dict)
    ctx.obj["connection_string"] = connection_string
    ctx.obj["config"] = str(config) if config else None
    ctx.obj["log_level"] = log_level


@cli.command()
@click.option("--prefix", help="Only list containers whose name starts with this prefix")
@click.pass_context
def containers(ctx, prefix: Optional[str]):
    """
    List blob containers.

    Example:
        azstore containers --prefix logs
    """
    blobs = _client(ctx).blob_client()
    marker = None
    try:
        while True:
            results = blobs.list_containers(prefix=prefix, marker=marker)
            for container in results:
                click.echo(container.name)
            marker = results.continuation_token
            if not marker:
                break
    except HTTPError as e:
        _fail(f"Failed to list containers: {e}")


@cli.command()
@click.argument("container")
@click.option("--prefix", help="Only list blobs whose name starts with this prefix")
@click.pass_context
def blobs(ctx, container: str, prefix: Optional[str]):
    """
    List blobs in a container.

    Example:
        azstore blobs photos --prefix 2024/
    """
    service = _client(ctx).blob_client()
    marker = None
    try:
        while True:
            results = service.list_blobs(container, prefix=prefix, marker=marker)
            for blob in results:
                size = blob.properties.get("content_length", 0)
                click.echo(f"{blob.name}\t{size}")
            marker = results.continuation_token
            if not marker:
                break
    except HTTPError as e:
        _fail(f"Failed to list blobs: {e}")


@cli.command()
@click.argument("container")
@click.argument("source", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--name", "blob_name", help="Blob name (default: file name)")
@click.option("--content-type", help="Content type stored with the blob")
@click.pass_context
def upload(ctx, container: str, source: Path, blob_name: Optional[str], content_type: Optional[str]):
    """
    Upload a local file as a block blob.

    Example:
        azstore upload photos ./cat.jpg --content-type image/jpeg
    """
    service = _client(ctx).blob_client()
    blob_name = blob_name or source.name
    try:
        with open(source, "rb") as f:
            blob = service.create_block_blob(
                container, blob_name, f, content_length=source.stat().st_size, content_type=content_type,
            )
    except (HTTPError, ValueError) as e:
        _fail(f"Failed to upload {source}: {e}")

    click.echo(f"[OK] Uploaded {source} to {container}/{blob_name}")
    if blob.properties.get("etag"):
        click.echo(f"   ETag: {blob.properties['etag']}")


@cli.command()
@click.argument("container")
@click.argument("blob_name")
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, writable=True, path_type=Path),
    help="Destination file (default: write to stdout)",
)
@click.pass_context
def download(ctx, container: str, blob_name: str, output: Optional[Path]):
    """
    Download a blob.

    Example:
        azstore download photos cat.jpg -o ./cat.jpg
    """
    service = _client(ctx).blob_client()
    try:
        _, content = service.get_blob(container, blob_name)
    except HTTPError as e:
        _fail(f"Failed to download {container}/{blob_name}: {e}")

    if output is None:
        click.get_binary_stream("stdout").write(content)
        return

    output.write_bytes(content)
    click.echo(f"[OK] Downloaded {len(content)} bytes to {output}")


@cli.command()
@click.option("--prefix", help="Only list shares whose name starts with this prefix")
@click.pass_context
def shares(ctx, prefix: Optional[str]):
    """List file shares."""
    files = _client(ctx).file_client()
    marker = None
    try:
        while True:
            results = files.list_shares(prefix=prefix, marker=marker)
            for share in results:
                click.echo(share.name)
            marker = results.continuation_token
            if not marker:
                break
    except HTTPError as e:
        _fail(f"Failed to list shares: {e}")


@cli.command()
@click.pass_context
def tables(ctx):
    """List tables."""
    service = _client(ctx).table_client()
    token = None
    try:
        while True:
            results = service.query_tables(next_table_token=token)
            for entry in results:
                click.echo(entry.get("TableName"))
            token = results.continuation_token
            if not token:
                break
    except HTTPError as e:
        _fail(f"Failed to list tables: {e}")


@cli.command()
@click.argument("table")
@click.option("--filter", "filter_", help="OData filter, e.g. \"PartitionKey eq 'smith'\"")
@click.option("--select", multiple=True, help="Property to return (can specify multiple times)")
@click.option("--top", type=int, help="Maximum number of entities to return")
@click.pass_context
def query(ctx, table: str, filter_: Optional[str], select: tuple, top: Optional[int]):
    """
    Query entities in a table and print them as JSON lines.

    Example:
        azstore query people --filter "Age gt 30" --select Name --top 10
    """
    service = _client(ctx).table_client()
    try:
        entities = service.query_entities(table, filter=filter_, select=list(select), top=top)
    except HTTPError as e:
        _fail(f"Failed to query {table}: {e}")

    for entity in entities:
        click.echo(json.dumps(entity.properties, default=str))
    if entities.continuation_token:
        logger.info(f"More entities available after {entities.continuation_token}")


@cli.command()
@click.argument("path", required=False, default="")
@click.option(
    "--service",
    "-s",
    type=click.Choice(["b", "f", "t"], case_sensitive=False),
    help="Service of a service SAS (omit for an account SAS)",
)
@click.option("--permissions", "-p", default="r", show_default=True, help="Granted permissions")
@click.option("--expiry", "-e", required=True, help="Expiry time, e.g. 2030-01-01T00:00:00Z")
@click.option("--start", help="Start time")
@click.option("--resource", help="Signed resource (service SAS) or resource types (account SAS)")
@click.option("--protocol", type=click.Choice(["https", "https,http"]), help="Allowed protocols")
@click.pass_context
def sas(
    ctx, path: str, service: Optional[str], permissions: str, expiry: str,
    start: Optional[str], resource: Optional[str], protocol: Optional[str],
):
    """
    Generate a shared access signature token.

    Examples:
        azstore sas photos/cat.jpg -s b -p r -e 2030-01-01T00:00:00Z
        azstore sas -p rl -e 2030-01-01T00:00:00Z --resource sco
    """
    client = _client(ctx)
    options = {"permissions": permissions, "expiry": expiry}
    if start:
        options["start"] = start
    if resource:
        options["resource"] = resource
    if protocol:
        options["protocol"] = protocol

    try:
        generator = SharedAccessSignature(client.storage_account_name or "", client.storage_access_key or "")
        if service:
            token = generator.generate_service_sas_token(path, service=service.lower(), **options)
        else:
            token = generator.generate_account_sas_token(service="bft", **{"resource": "sco", **options})
    except StorageError as e:
        _fail(f"Failed to generate SAS: {e}")

    click.echo(token)


def main():
    """Main entry point for CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
