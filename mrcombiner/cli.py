"""mr-combiner CLI entry point using Click.

Commands:
    mr-combiner serve [--host H] [--port N]       — run the webhook server (foreground)
    mr-combiner check-config                      — validate and print settings
    mr-combiner combine PROJECT_ID MR_IID [--branch B]
                                                  — run one combination now
"""

import asyncio
import json
from pathlib import Path

import click

from mrcombiner.config import Settings, load_settings
from mrcombiner.errors import ConfigurationError
from mrcombiner.logging_setup import configure_logging


def _settings(ctx: click.Context) -> Settings:
    """Load settings once per invocation; config errors end the process."""
    try:
        return load_settings(config_file=ctx.obj.get("config_file"))
    except ConfigurationError as exc:
        raise click.ClickException(str(exc)) from exc


@click.group()
@click.option(
    "--config", "config_file", type=click.Path(path_type=Path, dir_okay=False), default=None,
    envvar="MRCOMBINER_CONFIG",
    help="YAML file with default settings (environment variables override it).",
)
@click.pass_context
def main(ctx: click.Context, config_file: Path | None) -> None:
    """Combine labelled merge requests into one integration branch."""
    ctx.ensure_object(dict)
    ctx.obj["config_file"] = config_file


# ──────────────────────────────────────────────────────────────
# mr-combiner serve
# ──────────────────────────────────────────────────────────────

@main.command()
@click.option("--host", default="0.0.0.0", show_default=True, help="Interface to bind.")
@click.option("--port", type=int, default=None, help="Port (default: PORT setting, 8080).")
@click.pass_context
def serve(ctx: click.Context, host: str, port: int | None) -> None:
    """Run the webhook server in the foreground."""
    import uvicorn

    from mrcombiner.web import create_app

    settings = _settings(ctx)
    configure_logging(settings.log_level)
    app = create_app(settings)
    click.echo(f"Server is listening on {host}:{port or settings.port}")
    uvicorn.run(
        app,
        host=host,
        port=port or settings.port,
        log_level=settings.log_level.lower(),
        timeout_graceful_shutdown=15,
    )


# ──────────────────────────────────────────────────────────────
# mr-combiner check-config
# ──────────────────────────────────────────────────────────────

@main.command("check-config")
@click.pass_context
def check_config(ctx: click.Context) -> None:
    """Validate configuration and print it (secrets redacted)."""
    settings = _settings(ctx)
    click.echo(json.dumps(settings.redacted(), indent=2))


# ──────────────────────────────────────────────────────────────
# mr-combiner combine
# ──────────────────────────────────────────────────────────────

@main.command()
@click.argument("project_id", type=int)
@click.argument("mr_iid", type=int)
@click.option("--branch", default=None, help="Override the target branch for this run.")
@click.pass_context
def combine(ctx: click.Context, project_id: int, mr_iid: int, branch: str | None) -> None:
    """Run one combination now and report on MR_IID."""
    from mrcombiner.gitlab import GitLabClient
    from mrcombiner.models import CombineJob
    from mrcombiner.orchestrator import combine_merge_requests

    settings = _settings(ctx)
    configure_logging(settings.log_level)
    job = CombineJob(
        project_id=project_id,
        merge_request_iid=mr_iid,
        target_branch=branch or settings.target_branch,
        label=settings.trigger_tag,
    )

    async def _run():
        async with GitLabClient(
            settings.api_base_url,
            settings.gitlab_token,
            timeout=settings.http_timeout,
            clone_protocol=settings.clone_protocol,
        ) as gateway:
            return await combine_merge_requests(job, settings, gateway)

    outcome = asyncio.run(_run())
    click.echo(outcome.comment_body())
    if not outcome.ok:
        raise SystemExit(1)
