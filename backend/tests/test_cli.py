"""
CLI command tests.
"""

from conftest import ledger_balance
from loyalty.extensions import db
from loyalty.models import Event, Promotion, Transaction, User


def test_create_superuser(app, db_session):
    runner = app.test_cli_runner()

    result = runner.invoke(args=['users', 'create-superuser', 'clive123', 'clive@mail.utoronto.ca', 'SuperUser123!'])

    assert result.exit_code == 0, result.output
    assert 'PASS' in result.output
    user = db.session.query(User).filter_by(utorid='clive123').one()
    assert user.role == 'superuser'
    assert user.verified is True


def test_create_superuser_rejects_weak_password(app, db_session):
    runner = app.test_cli_runner()

    result = runner.invoke(args=['users', 'create-superuser', 'clive123', 'clive@mail.utoronto.ca', 'weak'])

    assert result.exit_code != 0
    assert db.session.query(User).count() == 0


def test_create_superuser_rejects_duplicate(app, db_session, regular):
    runner = app.test_cli_runner()

    result = runner.invoke(args=['users', 'create-superuser', regular.utorid, 'new@mail.utoronto.ca', 'SuperUser123!'])

    assert result.exit_code != 0
    assert 'already exists' in result.output


def test_seed_is_consistent_and_idempotent(app, db_session):
    runner = app.test_cli_runner()

    result = runner.invoke(args=['system', 'seed'])
    assert result.exit_code == 0, result.output

    assert db.session.query(User).count() == 8
    assert db.session.query(Promotion).count() == 3
    assert db.session.query(Event).count() == 1
    for user in db.session.query(User).all():
        assert user.points == ledger_balance(user.id)

    tx_count = db.session.query(Transaction).count()
    result = runner.invoke(args=['system', 'seed'])
    assert result.exit_code == 0, result.output
    assert 'SKIP' in result.output
    assert db.session.query(Transaction).count() == tx_count


def test_list_users(app, db_session, manager, regular):
    runner = app.test_cli_runner()

    result = runner.invoke(args=['users', 'list', '--role', 'manager'])

    assert result.exit_code == 0
    assert manager.utorid in result.output
    assert regular.utorid not in result.output
