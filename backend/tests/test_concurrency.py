"""
Threaded tests for the write serialization around units of work.

Each worker runs in its own app context (its own db.session and connection)
against a file-backed SQLite database, like two terminals hitting the API.
"""

import threading

import pytest
from backoffice import create_app
from backoffice.errors import ConflictError, CouponUnavailableError
from backoffice.extensions import db
from backoffice.models import (
    Branch,
    CartItem,
    CashSession,
    Coupon,
    CouponUsage,
    Customer,
    CustomerAddress,
    Product,
    ProductVariant,
)
from backoffice.services import build_services


@pytest.fixture
def shared_app(tmp_path):
    db_path = tmp_path / "concurrency.sqlite3"
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{db_path}",
        'SQLALCHEMY_ENGINE_OPTIONS': {"connect_args": {"check_same_thread": False, "timeout": 30}},
    })
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


def run_in_threads(app, work, args_list):
    """Run work(services, *args) once per args tuple, all released together."""
    results = []
    lock = threading.Lock()
    barrier = threading.Barrier(len(args_list))

    def worker(args):
        with app.app_context():
            services = build_services(db.session)
            try:
                barrier.wait()
                outcome = ("ok", work(services, *args))
            except Exception as exc:
                outcome = ("err", exc)
            finally:
                db.session.remove()
            with lock:
                results.append(outcome)

    threads = [threading.Thread(target=worker, args=(args,)) for args in args_list]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results


def test_concurrent_opens_yield_one_session(shared_app):
    with shared_app.app_context():
        branch = Branch(name="Downtown", kind="store", is_active=True)
        db.session.add(branch)
        db.session.commit()
        branch_id = branch.id

    def open_after_read(services, opening):
        # an earlier read leaves the session inside a transaction
        db.session.get(Branch, branch_id)
        return services.cash.open_session(branch_id, operator_id=1, opening_amount_cents=opening).id

    results = run_in_threads(shared_app, open_after_read, [(1000,), (2000,)])

    oks = [value for status, value in results if status == "ok"]
    errors = [value for status, value in results if status == "err"]
    assert len(oks) == 1
    assert len(errors) == 1
    assert isinstance(errors[0], ConflictError)

    with shared_app.app_context():
        sessions = db.session.query(CashSession).filter_by(branch_id=branch_id).all()
        assert [s.id for s in sessions] == oks


def test_last_coupon_use_has_one_winner(shared_app):
    with shared_app.app_context():
        branch = Branch(name="Downtown", kind="store", is_active=True)
        db.session.add(branch)
        db.session.flush()
        product = Product(branch_id=branch.id, sku="SKU-001", name="Dress 1", price_cents=10000, is_active=True)
        db.session.add(product)
        db.session.flush()
        variant = ProductVariant(product_id=product.id, size="M", color="black", stock=10, min_stock=0,
                                 is_active=True)
        coupon = Coupon(code="LAST", amount_cents=1000, quantity_total=1, quantity_used=0, is_active=True)
        db.session.add_all([variant, coupon])
        db.session.flush()

        buyers = []
        for n in range(2):
            customer = Customer(full_name=f"Buyer {n}", email=f"buyer{n}@example.com", is_active=True)
            db.session.add(customer)
            db.session.flush()
            address = CustomerAddress(customer_id=customer.id, label="home", street="Rua das Flores, 10",
                                      city="Campinas", state="SP", postal_code="13000-000")
            db.session.add(address)
            db.session.add(CartItem(customer_id=customer.id, variant_id=variant.id, quantity=1))
            db.session.flush()
            buyers.append((customer.id, address.id))
        db.session.commit()
        coupon_id = coupon.id
        variant_id = variant.id

    def checkout(services, customer_id, address_id):
        order = services.orders.commit_order(customer_id, None, address_id, coupon_code="LAST",
                                             require_valid_coupon=True)
        return order.id

    results = run_in_threads(shared_app, checkout, buyers)

    oks = [value for status, value in results if status == "ok"]
    errors = [value for status, value in results if status == "err"]
    assert len(oks) == 1
    assert len(errors) == 1
    assert isinstance(errors[0], CouponUnavailableError)

    with shared_app.app_context():
        assert db.session.get(Coupon, coupon_id).quantity_used == 1
        assert db.session.query(CouponUsage).count() == 1
        # only the winner's line left stock
        assert db.session.get(ProductVariant, variant_id).stock == 9
