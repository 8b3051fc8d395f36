from __future__ import annotations

import json
import sys
from typing import Optional

import click

from app.config import get_settings
from app.errors import ServiceError
from app.storage.workspace import WorkspaceManager


@click.group()
def cli():
    """Shorts assembler - build short videos from stills and publish them"""
    pass


@cli.command()
@click.option("--access-token", envvar="ACCESS_TOKEN", required=True, help="Bearer token for the upload platform")
@click.option("--video-url", envvar="VIDEO_URL", required=True, help="Remote video to publish")
@click.option("--title", envvar="TITLE", default="Short Video", show_default=True)
@click.option("--description", envvar="DESCRIPTION", default="")
@click.option("--tags", envvar="TAGS", default="", help="Comma separated tags")
@click.option("--privacy-status", default=None, help="Overrides the configured default visibility")
def upload(
    access_token: str,
    video_url: str,
    title: str,
    description: str,
    tags: str,
    privacy_status: Optional[str],
):
    """Download VIDEO_URL and publish it with a resumable upload."""
    from app.services.upload_service import UploadService

    settings = get_settings()
    workspaces = WorkspaceManager(settings.workspace_root, lease_ttl_minutes=settings.lease_ttl_minutes)
    service = UploadService.from_settings(settings, workspaces)
    tag_list = [part.strip() for part in tags.split(",") if part.strip()]
    click.echo(f"Uploading {video_url}", err=True)
    try:
        result = service.upload(
            video_url=video_url,
            access_token=access_token,
            title=title,
            description=description,
            tags=tag_list,
            privacy_status=privacy_status,
        )
    except ServiceError as exc:
        click.echo(f"Error: {exc.message}", err=True)
        sys.exit(1)
    click.echo(json.dumps(result, ensure_ascii=False))


@cli.command()
@click.option("--threshold", type=float, default=None, help="Age in minutes (defaults to the retention setting)")
def cleanup(threshold: Optional[float]):
    """Remove workspaces older than the retention threshold."""
    settings = get_settings()
    workspaces = WorkspaceManager(settings.workspace_root, lease_ttl_minutes=settings.lease_ttl_minutes)
    removed = workspaces.reclaim(threshold if threshold is not None else settings.retention_minutes)
    click.echo(json.dumps({"removed": removed}))


@cli.command()
@click.option("--host", default=None)
@click.option("--port", type=int, default=None)
def serve(host: Optional[str], port: Optional[int]):
    """Run the HTTP service."""
    import uvicorn

    settings = get_settings()
    uvicorn.run("app.main:app", host=host or settings.host, port=port or settings.port)


if __name__ == "__main__":
    cli()
