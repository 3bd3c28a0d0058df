# Overview: Flask CLI command groups for bootstrap, outbox dispatch, and inspection.

# backend/retailops/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create tables and document sequences (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed
#   Create one user per role, a rider, a vendor and a few variants.
#
# Side effects:
# - python -m flask outbox dispatch [--limit 100]
#   Run due notification / courier-sync tasks (retries with backoff).
# - python -m flask outbox list [--status FAILED]
#
# Inventory:
# - python -m flask inventory pending
#   List transactions waiting for approval.
# - python -m flask inventory stats [--days 30]

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Rider, SideEffectTask, User, Variant, Vendor
from .services import approval_service, side_effects
from .services.sequence_service import ensure_sequences


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables and sequence rows."""
    db.create_all()
    ensure_sequences()
    click.echo("OK Database initialized")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    db.drop_all()
    db.create_all()
    ensure_sequences()
    click.echo("OK Database reset")


@system_group.command('seed')
@with_appcontext
def seed():
    """Create demo users (one per role), a rider, a vendor and variants. Idempotent."""
    for role in ("admin", "manager", "operator", "rider", "viewer"):
        if not User.query.filter_by(username=role).first():
            db.session.add(User(username=role, name=role.title(), role=role))
    db.session.flush()

    rider_user = User.query.filter_by(username="rider").first()
    if not Rider.query.filter_by(user_id=rider_user.id).first():
        db.session.add(Rider(user_id=rider_user.id, name="Rider One", phone="9800000001"))

    if not Vendor.query.filter_by(name="Default Vendor").first():
        db.session.add(Vendor(name="Default Vendor", company_name="Default Supplies"))

    for sku, name, cost, price in (
        ("TSHIRT-BLK-M", "T-Shirt Black M", 350, 900),
        ("TSHIRT-WHT-M", "T-Shirt White M", 350, 900),
        ("HOODIE-GRY-L", "Hoodie Grey L", 1200, 2800),
    ):
        if not Variant.query.filter_by(sku=sku).first():
            db.session.add(Variant(sku=sku, name=name, cost_price=cost, selling_price=price))

    db.session.commit()
    for user in User.query.order_by(User.id).all():
        click.echo(f"  user id={user.id:<3} {user.username:<10} role={user.role}")
    click.echo("OK Seed data ready")


@click.group('outbox')
def outbox_group():
    """Post-commit side-effect queue."""


@outbox_group.command('dispatch')
@click.option('--limit', default=100, show_default=True, help='Max tasks to run')
@with_appcontext
def outbox_dispatch(limit):
    """Run every due side-effect task once."""
    stats = side_effects.process_due_tasks(limit=limit)
    click.echo(
        f"Processed {stats['processed']}: {stats['succeeded']} ok, "
        f"{stats['retried']} retrying, {stats['failed']} failed"
    )


@outbox_group.command('list')
@click.option('--status', default=None, help='PENDING, DONE or FAILED')
@click.option('--limit', default=50, show_default=True)
@with_appcontext
def outbox_list(status, limit):
    """List side-effect tasks, newest first."""
    query = SideEffectTask.query
    if status:
        query = query.filter_by(status=status.upper())
    for task in query.order_by(SideEffectTask.id.desc()).limit(limit).all():
        click.echo(
            f"{task.id:>6} {task.status:<8} {task.task_type:<22} order={task.order_id} "
            f"attempts={task.attempts} {task.last_error or ''}"
        )


@click.group('inventory')
def inventory_group():
    """Ledger inspection commands."""


@inventory_group.command('pending')
@click.option('--limit', default=50, show_default=True)
@with_appcontext
def inventory_pending(limit):
    """List transactions waiting for approval."""
    rows, total = approval_service.list_pending(limit=limit)
    click.echo(f"{total} pending")
    for tx in rows:
        click.echo(
            f"{tx.id:>6} {tx.invoice_no:<12} {tx.transaction_type:<16} "
            f"qty={tx.total_quantity:>6} by user={tx.performed_by_user_id} {tx.reason or ''}"
        )


@inventory_group.command('stats')
@click.option('--days', default=30, show_default=True)
@with_appcontext
def inventory_stats(days):
    """Approval counts by status over the last N days."""
    stats = approval_service.approval_stats(days=days)
    click.echo(f"Last {stats['period_days']} days:")
    for status, count in stats["by_status"].items():
        click.echo(f"  {status:<10} {count}")
    click.echo(f"Pending (all time): {stats['pending_total']}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(outbox_group)
    app.cli.add_command(inventory_group)
