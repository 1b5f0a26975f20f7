import json
import logging
from dataclasses import asdict
from pathlib import Path

import click

from .app import build_app
from .config import db_path
from .db import connect_db, init_db
from .exceptions import AutoSenderError
from .models import STATUSES, Profile, Resume
from .repository import get_config, set_config
from .utils import new_id, parse_iso
from .worker import run_workers


@click.group(help="autosender: queued job application submission")
@click.option("--db", "db", default=None, help="Database file (default: $AUTOSENDER_DB or autosender.db)")
@click.option("--log-level", default="INFO", show_default=True,
              type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False))
@click.pass_context
def cli(ctx, db, log_level):
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["db"] = db or db_path()
    # Ensure DB/schema exist before any command runs
    init_db(ctx.obj["db"])


def _fail(e: Exception):
    click.secho(f"Error: {e}", fg="red")
    raise SystemExit(1)


# ---------- Applications ----------
@cli.command("apply", help="Queue applications to one or more jobs")
@click.option("--user", "user_id", required=True, help="User ID")
@click.option("--resume", "resume_id", required=True, help="Resume ID")
@click.option("--job", "job_ids", required=True, multiple=True, help="Job ID (repeatable)")
@click.option("--cover-letter", default=None, help="Cover letter text")
@click.pass_obj
def apply_cmd(obj, user_id, resume_id, job_ids, cover_letter):
    app = build_app(obj["db"])
    try:
        result = app.service.queue_applications(user_id, resume_id, job_ids, cover_letter)
    except (AutoSenderError, ValueError) as e:
        _fail(e)
    finally:
        app.close()

    click.secho(f"Batch {result.batch_id}: queued {result.total_count} of {len(job_ids)} job(s)", fg="green")
    for a in result.applications:
        click.echo(f"{a.id} | job={a.job_id} | {a.status}")


@cli.command("cancel", help="Cancel a pending application")
@click.argument("application_id")
@click.option("--user", "user_id", default=None, help="Only cancel if owned by this user")
@click.pass_obj
def cancel_cmd(obj, application_id, user_id):
    app = build_app(obj["db"])
    try:
        app.service.cancel(application_id, user_id)
        click.secho(f"Cancelled {application_id}.", fg="green")
    except (AutoSenderError, ValueError) as e:
        _fail(e)
    finally:
        app.close()


@cli.command("list", help="List applications, newest first")
@click.option("--user", "user_id", default=None)
@click.option("--status", type=click.Choice(list(STATUSES)), default=None)
@click.option("--batch", "batch_id", default=None)
@click.option("--since", default=None, help="ISO timestamp; only applications created at or after it")
@click.option("--page", default=1, show_default=True, type=int)
@click.option("--limit", default=20, show_default=True, type=int)
@click.pass_obj
def list_cmd(obj, user_id, status, batch_id, since, page, limit):
    app = build_app(obj["db"])
    try:
        result = app.service.list_applications(
            user_id, status=status, batch_id=batch_id,
            from_date=parse_iso(since), page=page, limit=limit,
        )
    except ValueError as e:
        _fail(e)
    finally:
        app.close()

    if not result.data:
        click.echo("No applications.")
        return

    for a in result.data:
        click.echo(
            f"{a.id} | {a.status:<10} | user={a.user_id} | job={a.job_id} | retries={a.retry_count} "
            f"| confirmation={a.confirmation_id} | error={a.error_message}"
        )
    click.echo(f"page {result.page}/{result.total_pages} ({result.total} total)")


@cli.command("show", help="Show one application as JSON")
@click.argument("application_id")
@click.pass_obj
def show_cmd(obj, application_id):
    app = build_app(obj["db"])
    try:
        record = app.service.get_application(application_id)
        click.echo(json.dumps(record.to_dict(), indent=2))
    except AutoSenderError as e:
        _fail(e)
    finally:
        app.close()


@cli.command("status", help="Queue length and application counts")
@click.pass_obj
def status_cmd(obj):
    app = build_app(obj["db"])
    try:
        out = {
            "queue_length": app.queue.get_queue_length(),
            "applications": app.service.status_counts(),
        }
    finally:
        app.close()
    click.echo(json.dumps(out, indent=2))


@cli.command("queue", help="Show queued tasks in FIFO order")
@click.option("--limit", default=20, show_default=True, type=int)
@click.pass_obj
def queue_cmd(obj, limit):
    app = build_app(obj["db"])
    try:
        items = app.queue.get_queue_items(limit=limit)
    finally:
        app.close()

    if not items:
        click.echo("Queue is empty.")
        return
    for t in items:
        click.echo(f"{t.application_id} | user={t.user_id} | job={t.job_id} | queued_at={t.queued_at}")


# ---------- Workers ----------
@cli.group("worker", help="Manage workers")
def worker_group():
    pass


@worker_group.command("start")
@click.option("--count", type=int, default=1, show_default=True, help="Number of worker threads")
@click.pass_obj
def worker_start(obj, count):
    apps = [build_app(obj["db"], worker_name=f"worker-{i + 1}") for i in range(count)]
    click.secho(f"Starting {count} worker(s). Press Ctrl+C to stop…", fg="cyan")
    try:
        run_workers([a.worker for a in apps])
    finally:
        for a in apps:
            a.close()
    click.secho("Workers stopped.", fg="yellow")


@worker_group.command("once", help="Process at most one queued task and exit")
@click.pass_obj
def worker_once(obj):
    app = build_app(obj["db"])
    try:
        task = app.worker.process_queue()
    finally:
        app.close()
    if task is None:
        click.echo("Nothing to process.")
    else:
        click.echo(f"Processed {task.application_id}.")


# ---------- Resumes / profiles ----------
@cli.group("resume", help="Register resumes")
def resume_group():
    pass


@resume_group.command("add")
@click.option("--user", "user_id", required=True)
@click.option("--file", "file_path", required=True, type=click.Path(exists=True, dir_okay=False))
@click.option("--id", "resume_id", default=None, help="Resume ID (generated if omitted)")
@click.option("--title", default="")
@click.pass_obj
def resume_add(obj, user_id, file_path, resume_id, title):
    app = build_app(obj["db"])
    try:
        resume_id = resume_id or new_id()
        key = app.storage.put_file(f"{user_id}/{resume_id}{Path(file_path).suffix}",
                                   Path(file_path).read_bytes())
        app.resumes.save(Resume(id=resume_id, user_id=user_id, storage_key=key, title=title))
    except (OSError, ValueError) as e:
        _fail(e)
    finally:
        app.close()
    click.secho(f"Resume {resume_id} stored as {key}", fg="green")


@cli.group("profile", help="Applicant identity used in submissions")
def profile_group():
    pass


@profile_group.command("set")
@click.option("--user", "user_id", required=True)
@click.option("--first-name", required=True)
@click.option("--last-name", required=True)
@click.option("--email", required=True)
@click.option("--phone", default="")
@click.pass_obj
def profile_set(obj, user_id, first_name, last_name, email, phone):
    app = build_app(obj["db"])
    try:
        profile = app.profiles.save(Profile(user_id, first_name, last_name, email, phone))
    finally:
        app.close()
    click.echo(json.dumps(asdict(profile), indent=2))


# ---------- Config ----------
@cli.group("config", help="Configuration")
def config_group():
    pass


@config_group.command("get")
@click.pass_obj
def config_get(obj):
    conn = connect_db(obj["db"])
    try:
        click.echo(json.dumps(get_config(conn), indent=2))
    finally:
        conn.close()


@config_group.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_obj
def config_set_cmd(obj, key, value):
    conn = connect_db(obj["db"])
    try:
        set_config(conn, key, value)
        click.secho(f"Config updated: {key}={value}", fg="green")
    except ValueError as e:
        _fail(e)
    finally:
        conn.close()


def main():
    cli(obj={})
