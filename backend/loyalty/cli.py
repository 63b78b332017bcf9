# Overview: Flask CLI command groups for bootstrap, seeding and inspection.

# backend/loyalty/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to loyalty (PowerShell: $env:FLASK_APP="loyalty").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed
#   Load demo users, promotions, an event and a few transactions.
#
# User inspection/bootstrap:
# - python -m flask users list [--role manager]
#   List users with role, balance and flags.
# - python -m flask users create-superuser clive123 clive.su@mail.utoronto.ca "SuperUser123!"
#   Create a verified superuser.

import click
from datetime import timedelta
from flask.cli import with_appcontext

from .extensions import db
from .models import Event, EventGuest, EventOrganizer, Promotion, User
from .models.promotions import PROMO_AUTOMATIC, PROMO_ONE_TIME
from .models.users import ROLE_CASHIER, ROLE_LADDER, ROLE_MANAGER, ROLE_REGULAR, ROLE_SUPERUSER
from .services.auth_service import hash_password
from .services.notification_service import NullNotificationSink
from .services.transaction_service import TransactionEngine
from .validation import ValidationError, validate_email, validate_password, validate_utorid
from .time_utils import utcnow


DEMO_PASSWORD = "Password123!"


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created.")


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

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system seed' to load demo data.")


def _get_or_create_user(utorid: str, name: str, role: str) -> User:
    user = db.session.query(User).filter_by(utorid=utorid).first()
    if user:
        return user
    user = User(
        utorid=utorid,
        name=name,
        email=f"{utorid}@mail.utoronto.ca",
        role=role,
        verified=True,
        password_hash=hash_password(DEMO_PASSWORD),
    )
    db.session.add(user)
    return user


@system_group.command('seed')
@with_appcontext
def seed():
    """
    Load demo data. Idempotent for users; promotions, the event and the
    transactions are only created on an empty catalog.

    Point movements go through the transaction engine so balances always
    match the transaction history.
    """
    db.create_all()

    _get_or_create_user("superusr", "Super User", ROLE_SUPERUSER)
    manager = _get_or_create_user("manager1", "Manager One", ROLE_MANAGER)
    cashier = _get_or_create_user("cashier1", "Cashier One", ROLE_CASHIER)
    regulars = [_get_or_create_user(f"regular{i}", f"Regular {i}", ROLE_REGULAR) for i in range(1, 6)]
    db.session.commit()
    click.echo(f"PASS Users ready (password: {DEMO_PASSWORD})")

    if db.session.query(Promotion).count():
        click.echo("SKIP Catalog already seeded.")
        return

    now = utcnow()
    db.session.add_all([
        Promotion(
            name="Spend $30 bonus", description="Spend $30 get 10 bonus points",
            type=PROMO_AUTOMATIC, start_time=now - timedelta(days=1), end_time=now + timedelta(days=30),
            min_spending=30, points=10,
        ),
        Promotion(
            name="Welcome bonus", description="One-time 50 points",
            type=PROMO_ONE_TIME, start_time=now - timedelta(days=1), end_time=now + timedelta(days=60),
            points=50,
        ),
        Promotion(
            name="Double points Friday", description="1 extra point per dollar",
            type=PROMO_AUTOMATIC, start_time=now + timedelta(days=3), end_time=now + timedelta(days=4),
            rate=0.01,
        ),
    ])

    event = Event(
        name="Orientation Social", description="Welcome event for new members",
        location="Bahen Centre", start_time=now + timedelta(days=7), end_time=now + timedelta(days=7, hours=3),
        capacity=50, points_allocated=500, published=True,
    )
    event.organizers.append(EventOrganizer(user_id=manager.id))
    for user in regulars[:3]:
        event.guests.append(EventGuest(user_id=user.id))
    db.session.add(event)
    db.session.commit()
    click.echo("PASS Promotions and event created.")

    engine = TransactionEngine(NullNotificationSink())
    for i, user in enumerate(regulars, start=1):
        engine.create_purchase(cashier.id, user.utorid, 10.0 * i, remark="Seed purchase")
    engine.create_event_transaction(manager.id, event.id, None, 20, "Seed award")
    engine.create_transfer(regulars[4].id, regulars[0].id, 10, "Seed transfer")
    click.echo("PASS Seed transactions recorded.")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('list')
@click.option('--role', type=click.Choice(ROLE_LADDER), help='Filter by role')
@with_appcontext
def list_users(role):
    """List all users with their roles and balances."""
    query = db.session.query(User)

    if role:
        query = query.filter_by(role=role)

    users = query.order_by(User.id).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'UTORid':<10} {'Email':<35} {'Role':<10} {'Points':<8} {'Verified':<9} {'Susp.'}")
    click.echo("="*90)

    for user in users:
        verified_str = "Yes" if user.verified else "No"
        suspicious_str = "Yes" if user.suspicious else "No"
        click.echo(
            f"{user.id:<5} {user.utorid:<10} {user.email:<35} {user.role:<10} "
            f"{user.points:<8} {verified_str:<9} {suspicious_str}"
        )

    click.echo("="*90 + "\n")


@users_group.command('create-superuser')
@click.argument('utorid')
@click.argument('email')
@click.argument('password')
@with_appcontext
def create_superuser(utorid, email, password):
    """Create a verified superuser."""
    try:
        validate_utorid(utorid)
        validate_email(email)
        validate_password(password)
    except ValidationError as e:
        raise click.ClickException(e.message)

    if db.session.query(User).filter_by(utorid=utorid).first():
        raise click.ClickException(f"A user with utorid '{utorid}' already exists.")
    if db.session.query(User).filter_by(email=email).first():
        raise click.ClickException(f"A user with email '{email}' already exists.")

    user = User(
        utorid=utorid,
        name="Super User",
        email=email,
        role=ROLE_SUPERUSER,
        verified=True,
        password_hash=hash_password(password),
    )
    db.session.add(user)
    db.session.commit()
    click.echo(f"PASS Created superuser {user.utorid} (id={user.id})")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
