# cli.py
from __future__ import annotations

import json
import logging
import sys
import urllib.error
import urllib.request
from urllib.parse import urljoin

import click

from bzk.config import DEFAULT_QUEUE_NAME, OrchestrationConfig
from bzk.errors import OrchestrationError
from bzk.model import JobStatus
from bzk.orchestrate import LOG_FORMAT, orchestrate as run_orchestration
from bzk.ui.console import Console, get_console, set_console


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """Bazooka orchestrator: fetch, parse, build and run CI jobs in containers."""
    console = Console(debug=debug)
    set_console(console)
    logging.basicConfig(level=logging.DEBUG if debug else logging.INFO, format=LOG_FORMAT)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.pass_context
def orchestrate(ctx):
    """Orchestrate the job described by the BZK_* environment variables."""
    console = get_console()
    try:
        config = OrchestrationConfig.from_env()
        report = run_orchestration(config)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except OrchestrationError as e:
        console.print_error("Orchestration failed", str(e))
        if ctx.obj.get("debug", False):
            console.print_exception(e)
        sys.exit(1)

    # a Failed job is a business outcome, not an orchestration error
    if report.status is JobStatus.ERRORED:
        sys.exit(1)


@cli.command()
@click.option("--database-url", envvar="BZK_DATABASE_URL", required=True, help="Job store database URL")
@click.option("--redis-url", envvar="BZK_REDIS_URL", required=True, help="Redis URL of the job queue")
@click.option("--queue", "queue_name", envvar="BZK_QUEUE_NAME", default=DEFAULT_QUEUE_NAME, show_default=True)
@click.option("--poll-interval", default=5, type=int, help="Seconds to block on the queue per poll")
@click.pass_context
def worker(ctx, database_url, redis_url, queue_name, poll_interval):
    """Poll the job queue and orchestrate each job."""
    from bzk.redisq import JobQueue
    from bzk.store import SqlJobStore
    from bzk.worker import Worker

    console = get_console()
    try:
        w = Worker(
            JobQueue.from_url(redis_url, queue_name),
            SqlJobStore.from_url(database_url),
            poll_interval=poll_interval,
        )
        w.install_signal_handlers()
        w.run()
    except KeyboardInterrupt:
        console.print_info("\nWorker stopped by user")
        sys.exit(0)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)


@cli.group()
def image():
    """Manage the images used for fetch and parse stages."""


@image.command("set")
@click.argument("role")
@click.argument("image_ref")
@click.option("--database-url", envvar="BZK_DATABASE_URL", required=True, help="Job store database URL")
def image_set(role, image_ref, database_url):
    """Register IMAGE_REF for ROLE (e.g. parser, scm_git)."""
    from bzk.store import SqlJobStore

    console = get_console()
    try:
        SqlJobStore.from_url(database_url).set_image(role, image_ref)
    except OrchestrationError as e:
        console.print_error("Could not register image", str(e))
        sys.exit(1)
    console.print_info(f"{role} -> {image_ref}")


@cli.command()
@click.option("--api", required=True, help="API base URL (e.g., http://localhost:8000)")
@click.option("--project", "project_id", required=True, help="Project identifier")
@click.option("--scm", default="git", show_default=True, help="Source control kind")
@click.option("--url", "scm_url", required=True, help="Repository URL")
@click.option("--ref", "reference", default="HEAD", show_default=True, help="Git ref/branch/commit")
@click.pass_context
def submit(ctx, api, project_id, scm, scm_url, reference):
    """Create a job through the API and queue it for orchestration."""
    console = get_console()

    base_url = api.rstrip("/")
    url = urljoin(base_url + "/", f"projects/{project_id}/jobs")
    req_data = json.dumps({"scm": scm, "scm_url": scm_url, "reference": reference}).encode("utf-8")
    req = urllib.request.Request(url, data=req_data, headers={"Content-Type": "application/json"}, method="POST")

    try:
        with urllib.request.urlopen(req) as response:
            result = json.loads(response.read().decode("utf-8"))
    except urllib.error.HTTPError as e:
        error_body = e.read().decode("utf-8") if e.fp else ""
        console.print_error(
            "API request failed",
            f"HTTP {e.code} {e.reason}",
            details=[error_body] if error_body else None,
            suggestion=f"Check the API at {base_url} and verify your request.",
        )
        sys.exit(1)
    except urllib.error.URLError as e:
        console.print_error(
            "Network error",
            f"Could not connect to {base_url}",
            details=[str(e.reason)],
            suggestion="Verify the API URL is correct and the API is running.",
        )
        sys.exit(1)
    except json.JSONDecodeError as e:
        console.print_error(
            "Invalid API response",
            "Could not parse JSON response from API.",
            details=[str(e)],
        )
        sys.exit(1)

    console.print_info(f"\nSuccessfully submitted job to {base_url}")
    console.print_info(f"  Job ID: {result.get('job_id')}")
    console.print_info(f"  Status: {result.get('status')}")


if __name__ == "__main__":
    cli()
