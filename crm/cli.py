import click
from flask import current_app

from . import db
from .api import app_clock
from .automation.jobs import JOBS, run_job, run_rule
from .automation.rules import RULES, AutomationConfig
from .automation.scheduler import AutomationScheduler


def _print_runs(runs):
    for r in runs:
        line = f"  {r.rule}: emitted={r.emitted} applied={r.applied} skipped={r.skipped} failed={r.failed}"
        if r.error:
            line += f" error={r.error}"
        click.echo(line)


def register_cli(app):
    @app.cli.command("init-db")
    @click.option("--drop", is_flag=True, help="Drop all tables first")
    def init_db_cmd(drop):
        if drop:
            if not click.confirm("This will DROP all tables. Continue?", default=False):
                click.echo("Cancelled.")
                return
            db.drop_all()
        db.create_all()
        click.echo("✅ Tables created")

    @app.cli.group("automation")
    def automation_group():
        """Run and inspect the automation jobs."""

    @automation_group.command("list")
    def list_cmd():
        for job in JOBS.values():
            click.echo(f"{job.name:<26} {job.cron:<12} {', '.join(job.rules)}")

    @automation_group.command("run")
    @click.argument("job_name")
    def run_cmd(job_name):
        if job_name not in JOBS:
            raise click.ClickException(f"Unknown job: {job_name} (see `flask automation list`)")
        config = AutomationConfig.from_app_config(current_app.config)
        runs = run_job(job_name, app_clock(), db.session, config)
        click.echo(f"✅ {job_name}")
        _print_runs(runs)

    @automation_group.command("rule")
    @click.argument("rule_name")
    def rule_cmd(rule_name):
        if rule_name not in RULES:
            raise click.ClickException(f"Unknown rule: {rule_name}. Known: {', '.join(sorted(RULES))}")
        config = AutomationConfig.from_app_config(current_app.config)
        run = run_rule(rule_name, app_clock(), db.session, config)
        _print_runs([run])

    @automation_group.command("serve")
    def serve_cmd():
        """Run the scheduler in the foreground until interrupted."""
        app_obj = current_app._get_current_object()
        scheduler = AutomationScheduler(
            app_obj,
            clock=app_clock(),
            tick_interval_seconds=app_obj.config.get("SCHEDULER_TICK_SECONDS", 30),
        )
        click.echo(f"Scheduler running ({len(JOBS)} jobs). Ctrl+C to stop.")
        scheduler.start()
        try:
            while scheduler.is_running:
                scheduler.join(1.0)
        except KeyboardInterrupt:
            pass
        finally:
            scheduler.stop()
            click.echo("Scheduler stopped.")
