#!/usr/bin/env python3
"""
Spread Pick'em Management CLI

Wraps the commands registered by pickem.commands (game, settle, leaderboard,
user, db-cmd, status) and adds schema migration helpers.

    python manage.py settle pending --season 2024
    python manage.py game set-score 12 31 17
"""

import os

import click
from flask.cli import FlaskGroup, with_appcontext
from flask_migrate import downgrade, migrate, upgrade

from pickem import create_app


def _create_app():
    return create_app(os.environ.get("FLASK_CONFIG", "default"))


@click.group(cls=FlaskGroup, create_app=_create_app)
def cli():
    """Spread Pick'em Management CLI"""
    pass


@cli.group("db-migrate")
def db_migrate():
    """Database migration commands"""
    pass


@db_migrate.command("create")
@click.option("-m", "--message", required=True, help="Migration message")
@with_appcontext
def create_migration(message):
    """Create a new migration"""
    try:
        migrate(message=message)
        click.echo(f"✅ Migration created: {message}")
    except Exception as e:
        click.echo(f"❌ Error creating migration: {str(e)}")
        raise SystemExit(1)


@db_migrate.command("apply")
@click.option("--revision", default="head", help="Revision to upgrade to")
@with_appcontext
def apply_migrations(revision):
    """Apply migrations to database"""
    try:
        upgrade(revision=revision)
        click.echo(f"✅ Migrations applied to {revision}")
    except Exception as e:
        click.echo(f"❌ Error applying migrations: {str(e)}")
        raise SystemExit(1)


@db_migrate.command("rollback")
@click.option("--revision", required=True, help="Revision to downgrade to")
@with_appcontext
def rollback_migration(revision):
    """Rollback migrations to specific revision"""
    try:
        downgrade(revision=revision)
        click.echo(f"✅ Rolled back to {revision}")
    except Exception as e:
        click.echo(f"❌ Error rolling back: {str(e)}")
        raise SystemExit(1)


if __name__ == "__main__":
    cli()
