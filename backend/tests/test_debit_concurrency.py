import os
import tempfile
import threading
import unittest
from unittest import mock

from stashbook import create_app
from stashbook.extensions import db
from stashbook.identity import Actor
from stashbook.models import Container, Product
from stashbook.services import transfer_service
from stashbook.services.balance_service import InsufficientBalance, balance_of


SELLER = Actor(uid="seller", display_name="Vendedor", role_level=3)


class DebitConcurrencyTests(unittest.TestCase):
    """Concurrent debits against one container on a file-backed SQLite store."""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = os.path.join(self.tmpdir.name, "debits.db")
        self.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
            "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"timeout": 30}},
            "NOTIFY_RELAY_URL": None,
        })

        with self.app.app_context():
            db.drop_all()
            db.create_all()
            product = Product(name="Pistola", is_active=True)
            source = Container(name="Baú X")
            dest = Container(name="Baú Y")
            db.session.add_all([product, source, dest])
            db.session.commit()
            self.product_id, self.source_id, self.dest_id = product.id, source.id, dest.id

            transfer_service.record_production(
                product_id=self.product_id, container_id=self.source_id, quantity=100, actor=SELLER,
            )
            db.session.remove()

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.session.remove()
            db.engine.dispose()
        self.tmpdir.cleanup()

    def _sell(self, quantity, outcomes, lock):
        with self.app.app_context():
            try:
                transfer_service.record_sale(
                    product_id=self.product_id,
                    container_id=self.source_id,
                    quantity=quantity,
                    actor=SELLER,
                )
                result = "recorded"
            except InsufficientBalance:
                result = "rejected"
            except Exception as exc:
                result = exc
            finally:
                db.session.remove()
            with lock:
                outcomes.append(result)

    def test_sale_cannot_slip_in_between_check_and_transfer(self):
        outcomes = []
        lock = threading.Lock()
        seller = threading.Thread(target=self._sell, args=(100, outcomes, lock))
        real_check = transfer_service.require_available
        raced = threading.Event()

        def check_then_race(product_id, container_id, quantity):
            available = real_check(product_id, container_id, quantity)
            if not raced.is_set():
                # The competing sale gets a head start while the transfer
                # sits between its balance check and its appends.
                raced.set()
                seller.start()
                seller.join(timeout=0.5)
            return available

        with mock.patch.object(transfer_service, "require_available", check_then_race):
            with self.app.app_context():
                transfer_service.transfer_stock(
                    product_id=self.product_id,
                    from_container_id=self.source_id,
                    to_container_id=self.dest_id,
                    quantity=60,
                    actor=SELLER,
                )
                db.session.remove()
            seller.join()

        self.assertEqual(outcomes, ["rejected"])
        with self.app.app_context():
            self.assertEqual(balance_of(self.product_id, self.source_id), 40)
            self.assertEqual(balance_of(self.product_id, self.dest_id), 60)

    def test_concurrent_sales_never_overdraw(self):
        outcomes = []
        lock = threading.Lock()

        threads = [
            threading.Thread(target=self._sell, args=(10, outcomes, lock))
            for _ in range(20)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(outcomes.count("recorded"), 10)
        self.assertEqual(outcomes.count("rejected"), 10)
        with self.app.app_context():
            self.assertEqual(balance_of(self.product_id, self.source_id), 0)
