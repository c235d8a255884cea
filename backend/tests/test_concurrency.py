# Overview: Threaded concurrency tests against a file-backed SQLite store.

"""
Scripted concurrency tests for the pallet ledger and invoice payments.

Each worker runs in its own app context (own session, own connection).
"""
import os
import tempfile
import threading
import unittest
from decimal import Decimal
from unittest import mock

from warehouse import create_app
from warehouse.extensions import db
from warehouse.models import Invoice, LedgerRecord, Location, Pallet
from warehouse.services import billing_service, location_service, pallet_service
from warehouse.services.concurrency import run_with_retry
from warehouse.validation import ConflictError, VersionConflictError


class ConcurrencyTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = os.path.join(self.tmpdir.name, "concurrency.db")
        self.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
        })

        with self.app.app_context():
            db.drop_all()
            db.create_all()

            for loc_id in ("A1", "A2", "A3", "A4", "A5", "A6"):
                location_service.create_location(location_id=loc_id, capacity_pallets=1)
            location_service.create_location(location_id="FLOOR")

            pallet_service.check_in(
                pallet_id="P1",
                customer_name="Acme",
                product_id="SKU-1",
                location="A1",
                pallet_quantity=10,
                idempotency_key="seed-p1",
            )

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.session.remove()
            db.engine.dispose()
        self.tmpdir.cleanup()

    def _run_threads(self, targets):
        threads = [threading.Thread(target=t) for t in targets]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

    def test_same_version_moves_have_exactly_one_winner(self):
        results = []
        lock = threading.Lock()

        def worker(target):
            def _run():
                with self.app.app_context():
                    try:
                        pallet_service.move(
                            "P1",
                            to_location=target,
                            expected_version=1,
                            idempotency_key=f"move-{target}",
                        )
                        with lock:
                            results.append("moved")
                    except Exception as exc:
                        with lock:
                            results.append(exc)
                    finally:
                        db.session.remove()
            return _run

        self._run_threads([worker(t) for t in ("A2", "A3", "A4", "A5", "A6")])

        moved = [r for r in results if r == "moved"]
        conflicts = [r for r in results if isinstance(r, VersionConflictError)]
        self.assertEqual(len(moved), 1)
        self.assertEqual(len(conflicts), 4)

        with self.app.app_context():
            pallet = db.session.query(Pallet).filter_by(id="P1", status="active").one()
            self.assertEqual(pallet.version, 2)
            self.assertEqual(db.session.query(LedgerRecord).filter_by(action="MOVE").count(), 1)

    def _race_for_slot(self, calls):
        """
        Run calls in parallel, each paused right after its occupancy count so
        that every worker sees the slot as free before anyone claims it.
        """
        results = []
        lock = threading.Lock()
        barrier = threading.Barrier(len(calls), timeout=10)
        real_count = location_service.count_active_pallets

        def counted_then_wait(*args, **kwargs):
            count = real_count(*args, **kwargs)
            barrier.wait()
            return count

        def worker(call):
            def _run():
                with self.app.app_context():
                    try:
                        call()
                        with lock:
                            results.append("ok")
                    except Exception as exc:
                        with lock:
                            results.append(exc)
                    finally:
                        db.session.remove()
            return _run

        with mock.patch.object(pallet_service, "count_active_pallets", counted_then_wait):
            self._run_threads([worker(call) for call in calls])
        return results

    def _assert_single_occupant(self, results, location_id):
        conflicts = [r for r in results if isinstance(r, ConflictError)]
        self.assertEqual(results.count("ok"), 1, results)
        self.assertEqual(len(conflicts), len(results) - 1, results)
        self.assertFalse(any(isinstance(r, VersionConflictError) for r in conflicts))

        with self.app.app_context():
            occupants = (
                db.session.query(Pallet)
                .filter_by(location=location_id, status="active")
                .count()
            )
            self.assertEqual(occupants, 1)
            self.assertTrue(db.session.get(Location, location_id).is_occupied)

    def test_racing_moves_into_one_slot_admit_one_pallet(self):
        with self.app.app_context():
            pallet_service.check_in(
                pallet_id="P2", customer_name="Acme", product_id="SKU-1", location="A2"
            )

        results = self._race_for_slot([
            lambda: pallet_service.move("P1", to_location="A3"),
            lambda: pallet_service.move("P2", to_location="A3"),
        ])

        self._assert_single_occupant(results, "A3")
        with self.app.app_context():
            self.assertEqual(
                db.session.query(LedgerRecord).filter_by(action="MOVE").count(), 1
            )
            locations = {
                p.id: p.location
                for p in db.session.query(Pallet).filter_by(status="active").all()
            }
            self.assertIn(locations, ({"P1": "A3", "P2": "A2"}, {"P1": "A1", "P2": "A3"}))

    def test_racing_check_ins_into_one_slot_admit_one_pallet(self):
        results = self._race_for_slot([
            lambda: pallet_service.check_in(
                pallet_id="NEW-1", customer_name="Acme", product_id="SKU-3", location="A4"
            ),
            lambda: pallet_service.check_in(
                pallet_id="NEW-2", customer_name="Acme", product_id="SKU-3", location="A4"
            ),
        ])

        self._assert_single_occupant(results, "A4")
        with self.app.app_context():
            self.assertEqual(db.session.query(Pallet).filter_by(product_id="SKU-3").count(), 1)

    def test_concurrent_removals_lose_no_updates(self):
        errors = []
        lock = threading.Lock()

        def worker(n):
            def _run():
                with self.app.app_context():
                    try:
                        run_with_retry(
                            lambda: pallet_service.remove_quantity(
                                "P1", quantity_to_remove=1, idempotency_key=f"remove-{n}"
                            ),
                            attempts=20,
                            backoff_base=0.01,
                        )
                    except Exception as exc:
                        with lock:
                            errors.append(exc)
                    finally:
                        db.session.remove()
            return _run

        self._run_threads([worker(n) for n in range(6)])

        self.assertFalse(errors)
        with self.app.app_context():
            pallet = db.session.query(Pallet).filter_by(id="P1", status="active").one()
            self.assertEqual(pallet.pallet_quantity, 4)
            self.assertEqual(pallet.version, 7)
            self.assertEqual(
                db.session.query(LedgerRecord).filter_by(action="PARTIAL_REMOVE").count(), 6
            )

    def test_same_idempotency_key_applies_once(self):
        outcomes = []
        lock = threading.Lock()

        def worker(n):
            def _run():
                with self.app.app_context():
                    try:
                        result = run_with_retry(
                            lambda: pallet_service.check_in(
                                pallet_id=f"NEW-{n}",
                                customer_name="Acme",
                                product_id="SKU-2",
                                location="FLOOR",
                                idempotency_key="same-scan",
                            ),
                            attempts=20,
                            backoff_base=0.01,
                        )
                        with lock:
                            outcomes.append(result.deduped)
                    except Exception as exc:
                        with lock:
                            outcomes.append(exc)
                    finally:
                        db.session.remove()
            return _run

        self._run_threads([worker(n) for n in range(5)])

        self.assertEqual(outcomes.count(False), 1)
        self.assertEqual(outcomes.count(True), 4)
        with self.app.app_context():
            self.assertEqual(
                db.session.query(LedgerRecord).filter_by(idempotency_key="same-scan").count(), 1
            )
            self.assertEqual(db.session.query(Pallet).filter_by(product_id="SKU-2").count(), 1)

    def test_concurrent_payments_all_land(self):
        with self.app.app_context():
            # no occupancy in that week; the flat fee makes the total 100.00
            invoice = billing_service.generate_invoice(
                "Acme", "2020-01-06", "2020-01-12", {"rate_per_pallet_week": "7", "handling_fee_flat": "100"}
            )
            invoice_id = invoice.id

        errors = []
        lock = threading.Lock()

        def worker(n):
            def _run():
                with self.app.app_context():
                    try:
                        run_with_retry(
                            lambda: billing_service.record_payment(
                                invoice_id, "10", idempotency_key=f"pay-{n}"
                            ),
                            attempts=20,
                            backoff_base=0.01,
                        )
                    except Exception as exc:
                        with lock:
                            errors.append(exc)
                    finally:
                        db.session.remove()
            return _run

        self._run_threads([worker(n) for n in range(5)])

        self.assertFalse(errors)
        with self.app.app_context():
            invoice = db.session.get(Invoice, invoice_id)
            self.assertEqual(invoice.amount_paid, Decimal("50.00"))
            self.assertEqual(len(invoice.payments), 5)
            self.assertEqual(invoice.payment_status, "PARTIAL")


if __name__ == "__main__":
    unittest.main(verbosity=2)
