from backoffice.models import Branch


def test_seed_branch_is_idempotent(app, db_session):
    runner = app.test_cli_runner()

    first = runner.invoke(args=["backoffice", "seed-branch", "--name", "Shopping Center", "--kind", "store"])
    second = runner.invoke(args=["backoffice", "seed-branch", "--name", "Shopping Center"])

    assert first.exit_code == 0
    assert "Created branch" in first.output
    assert "already exists" in second.output
    assert db_session.query(Branch).filter_by(name="Shopping Center").count() == 1


def test_sessions_lists_balances(app, db_session, branch):
    services = app.extensions["backoffice"]
    session = services.cash.open_session(branch.id, operator_id=1, opening_amount_cents=10000)
    services.cash.close_session(session.id, operator_id=1, declared_amount_cents=9950)

    result = app.test_cli_runner().invoke(args=["backoffice", "sessions", "--status", "pending_approval"])

    assert result.exit_code == 0
    assert "Downtown" in result.output
    assert "100.00" in result.output
    assert "-0.50" in result.output


def test_sessions_empty(app, db_session):
    result = app.test_cli_runner().invoke(args=["backoffice", "sessions"])
    assert "No sessions found." in result.output


def test_stock_alerts(app, db_session, make_variant):
    make_variant(stock=1, min_stock=4)
    result = app.test_cli_runner().invoke(args=["backoffice", "stock-alerts"])
    assert "shortfall=3" in result.output
