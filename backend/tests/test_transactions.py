"""
Transaction writer tests.

Verifies:
- Checkout stores header + items with server-side prices and amounts
- Rejected checkouts (no items, unknown method, short cash, bad stock) write nothing
- Stock is drawn down first-expiring-first
- Duplicate reference numbers conflict
- A failure after the header and items are flushed rolls everything back
- History pagination and delete (pharmacist/admin only, stock not restored)
"""

import pytest

from pharmapos.extensions import db
from pharmapos.models import ProductItem, Transaction, TransactionItem, SecurityEvent
from pharmapos.services import transaction_service
from pharmapos.services.transaction_service import InsufficientStockError, TransactionError


def checkout(client, headers, **overrides):
    payload = {
        "payment_method": "cash",
        "reference_number": "0001",
        "is_senior_pwd": False,
        "cash_received": 500,
        "items": [],
    }
    payload.update(overrides)
    return client.post("/api/transactions", json=payload, headers=headers)


def batch_stock(product):
    rows = (
        db.session.query(ProductItem)
        .filter_by(product_id=product.id)
        .order_by(ProductItem.expiry_date.asc())
        .all()
    )
    return [(row.batch_number, row.stock) for row in rows]


class TestCreateTransaction:

    def test_senior_cash_sale(self, client, clerk_headers, clerk_user, paracetamol, senior_discount):
        resp = checkout(
            client,
            clerk_headers,
            is_senior_pwd=True,
            senior_pwd_id="12345",
            senior_pwd_id_type="senior",
            cash_received=200,
            items=[{"product_id": paracetamol.id, "quantity": 2, "unit_price": 1}],
        )

        assert resp.status_code == 201, resp.json
        body = resp.json
        assert body["reference_no"] == "CASH-0001"

        amounts = body["calculated_amounts"]
        assert amounts["subtotal_cents"] == 20000
        assert amounts["discount_cents"] == 4000
        assert amounts["vat_cents"] == 1920
        assert amounts["total_cents"] == 17920
        assert amounts["cash_received_cents"] == 20000
        assert amounts["change_cents"] == 2080

        txn = db.session.get(Transaction, body["transaction_id"])
        assert txn.user_id == clerk_user.id
        assert txn.senior_pwd_id == "SENIOR-12345"
        assert len(txn.items) == 1
        item = txn.items[0]
        # Catalog price wins over the client's unit_price
        assert item.unit_price_cents == 10000
        assert item.subtotal_cents == 17920
        assert item.discount_id == senior_discount.id

    def test_gcash_sale_has_no_change(self, client, clerk_headers, paracetamol):
        resp = checkout(
            client,
            clerk_headers,
            payment_method="gcash",
            reference_number="GC998877",
            cash_received=None,
            items=[{"product_id": paracetamol.id, "quantity": 1}],
        )

        assert resp.status_code == 201, resp.json
        assert resp.json["reference_no"] == "GCASH-GC998877"
        assert resp.json["calculated_amounts"]["change_cents"] is None
        assert resp.json["transaction"]["payment_method"] == "Gcash"

    def test_cash_reference_generated_when_blank(self, client, clerk_headers, paracetamol):
        resp = checkout(
            client,
            clerk_headers,
            reference_number="",
            items=[{"product_id": paracetamol.id, "quantity": 1}],
        )

        assert resp.status_code == 201, resp.json
        assert resp.json["reference_no"].startswith("CASH-")
        assert len(resp.json["reference_no"]) == len("CASH-20261017-140502")

    def test_items_sum_to_header_total(self, client, clerk_headers, paracetamol, insulin, vitamins):
        resp = checkout(
            client,
            clerk_headers,
            is_senior_pwd=True,
            senior_pwd_id="PWD-42",
            cash_received=5000,
            items=[
                {"product_id": paracetamol.id, "quantity": 3},
                {"product_id": insulin.id, "quantity": 1},
                {"product_id": vitamins.id, "quantity": 2},
            ],
        )

        assert resp.status_code == 201, resp.json
        txn = db.session.get(Transaction, resp.json["transaction_id"])
        assert sum(i.subtotal_cents for i in txn.items) == txn.total_cents
        assert txn.total_cents == txn.subtotal_cents - txn.discount_cents + txn.vat_cents
        exempt = [i for i in txn.items if i.is_vat_exempt]
        assert len(exempt) == 1 and exempt[0].vat_cents == 0

    def test_duplicate_lines_are_merged(self, client, clerk_headers, paracetamol):
        resp = checkout(
            client,
            clerk_headers,
            items=[
                {"product_id": paracetamol.id, "quantity": 1},
                {"product_id": paracetamol.id, "quantity": 2},
            ],
        )

        assert resp.status_code == 201, resp.json
        items = resp.json["transaction"]["items"]
        assert len(items) == 1
        assert items[0]["quantity"] == 3


class TestRejectedCheckout:

    @pytest.mark.parametrize(
        "overrides",
        [
            {"items": []},
            {"items": None},
            {"payment_method": "credit_card"},
            {"payment_method": None},
        ],
    )
    def test_rejected_without_writing_rows(self, client, clerk_headers, paracetamol, overrides):
        payload = {"items": [{"product_id": paracetamol.id, "quantity": 1}]}
        payload.update(overrides)
        resp = checkout(client, clerk_headers, **payload)

        assert resp.status_code == 400
        assert db.session.query(Transaction).count() == 0
        assert db.session.query(TransactionItem).count() == 0
        assert batch_stock(paracetamol) == [("LOT-A", 30), ("LOT-B", 20)]

    def test_senior_without_id_rejected(self, client, clerk_headers, paracetamol):
        resp = checkout(
            client,
            clerk_headers,
            is_senior_pwd=True,
            items=[{"product_id": paracetamol.id, "quantity": 1}],
        )
        assert resp.status_code == 400
        assert "ID is required" in resp.json["error"]

    @pytest.mark.parametrize("flag", ["false", "0", "no", "true", 1, 0, [], {}])
    def test_non_boolean_senior_flag_rejected(self, client, clerk_headers, paracetamol, senior_discount, flag):
        resp = checkout(
            client,
            clerk_headers,
            is_senior_pwd=flag,
            senior_pwd_id="SC-1",
            items=[{"product_id": paracetamol.id, "quantity": 1}],
        )

        assert resp.status_code == 400
        assert "is_senior_pwd" in resp.json["error"]
        assert db.session.query(Transaction).count() == 0
        assert batch_stock(paracetamol) == [("LOT-A", 30), ("LOT-B", 20)]

    def test_missing_senior_flag_means_no_discount(self, client, clerk_headers, paracetamol, senior_discount):
        resp = checkout(
            client,
            clerk_headers,
            is_senior_pwd=None,
            items=[{"product_id": paracetamol.id, "quantity": 1}],
        )

        assert resp.status_code == 201, resp.json
        txn = db.session.get(Transaction, resp.json["transaction_id"])
        assert txn.discount_cents == 0
        assert txn.total_cents == 11200

    def test_insufficient_cash_rejected(self, client, clerk_headers, paracetamol):
        resp = checkout(
            client,
            clerk_headers,
            cash_received=100,
            items=[{"product_id": paracetamol.id, "quantity": 1}],
        )
        assert resp.status_code == 400
        assert db.session.query(Transaction).count() == 0

    def test_wallet_payment_requires_reference(self, client, clerk_headers, paracetamol):
        resp = checkout(
            client,
            clerk_headers,
            payment_method="maya",
            reference_number="  ",
            items=[{"product_id": paracetamol.id, "quantity": 1}],
        )
        assert resp.status_code == 400

    def test_unknown_product_rejected(self, client, clerk_headers, db_session):
        resp = checkout(client, clerk_headers, items=[{"product_id": 999, "quantity": 1}])
        assert resp.status_code == 400
        assert "not found" in resp.json["error"]

    def test_insufficient_stock_conflicts(self, client, clerk_headers, insulin):
        resp = checkout(
            client,
            clerk_headers,
            cash_received=100000,
            items=[{"product_id": insulin.id, "quantity": 6}],
        )
        assert resp.status_code == 409
        assert db.session.query(Transaction).count() == 0
        assert batch_stock(insulin) == [("INS-1", 5)]

    def test_duplicate_reference_conflicts(self, client, clerk_headers, paracetamol):
        items = [{"product_id": paracetamol.id, "quantity": 1}]
        assert checkout(client, clerk_headers, items=items).status_code == 201

        resp = checkout(client, clerk_headers, items=items)
        assert resp.status_code == 409
        assert db.session.query(Transaction).count() == 1

    def test_requires_verified_session(self, client, paracetamol):
        resp = checkout(client, {}, items=[{"product_id": paracetamol.id, "quantity": 1}])
        assert resp.status_code == 401


class TestStockDrawDown:

    def test_earliest_expiry_batch_sold_first(self, client, clerk_headers, paracetamol):
        resp = checkout(
            client,
            clerk_headers,
            cash_received=5000,
            items=[{"product_id": paracetamol.id, "quantity": 35}],
        )

        assert resp.status_code == 201, resp.json
        assert batch_stock(paracetamol) == [("LOT-A", 0), ("LOT-B", 15)]

    def test_inactive_batches_are_not_sold(self, client, clerk_headers, paracetamol):
        lot_a = db.session.query(ProductItem).filter_by(batch_number="LOT-A").one()
        lot_a.is_active = False
        db.session.commit()

        resp = checkout(
            client,
            clerk_headers,
            cash_received=5000,
            items=[{"product_id": paracetamol.id, "quantity": 21}],
        )
        assert resp.status_code == 409
        assert batch_stock(paracetamol) == [("LOT-A", 30), ("LOT-B", 20)]

    def test_decrement_fails_when_batches_run_short(self, app, paracetamol):
        with pytest.raises(InsufficientStockError):
            transaction_service.decrement_stock_fifo(paracetamol.id, 51)
        db.session.rollback()
        assert batch_stock(paracetamol) == [("LOT-A", 30), ("LOT-B", 20)]

    def test_failure_after_items_flushed_writes_nothing(
        self, client, clerk_headers, paracetamol, insulin, monkeypatch
    ):
        real_decrement = transaction_service.decrement_stock_fifo
        pending = {}

        def decrement_then_fail(product_id, quantity):
            if product_id == insulin.id:
                pending["transactions"] = db.session.query(Transaction).count()
                pending["items"] = db.session.query(TransactionItem).count()
                raise InsufficientStockError("Batch vanished mid-checkout")
            return real_decrement(product_id, quantity)

        monkeypatch.setattr(transaction_service, "decrement_stock_fifo", decrement_then_fail)

        resp = checkout(
            client,
            clerk_headers,
            cash_received=100000,
            items=[
                {"product_id": paracetamol.id, "quantity": 3},
                {"product_id": insulin.id, "quantity": 1},
            ],
        )

        assert resp.status_code == 409
        assert pending == {"transactions": 1, "items": 2}
        assert db.session.query(Transaction).count() == 0
        assert db.session.query(TransactionItem).count() == 0
        assert batch_stock(paracetamol) == [("LOT-A", 30), ("LOT-B", 20)]
        assert batch_stock(insulin) == [("INS-1", 5)]


class TestHistory:

    def _ring_up(self, client, headers, product, count):
        for n in range(count):
            resp = checkout(
                client,
                headers,
                reference_number=f"R{n:03d}",
                items=[{"product_id": product.id, "quantity": 1}],
            )
            assert resp.status_code == 201, resp.json

    def test_list_is_newest_first_and_paginated(self, client, clerk_headers, paracetamol):
        self._ring_up(client, clerk_headers, paracetamol, 5)

        resp = client.get("/api/transactions?page=1&limit=2", headers=clerk_headers)
        assert resp.status_code == 200
        body = resp.json
        assert body["pagination"] == {
            "page": 1,
            "limit": 2,
            "total": 5,
            "total_pages": 3,
            "has_more": True,
        }
        assert [t["reference_no"] for t in body["items"]] == ["CASH-R004", "CASH-R003"]
        assert body["items"][0]["item_count"] == 1
        assert body["items"][0]["first_item"]["product_name"] == "Paracetamol 500mg"

        last = client.get("/api/transactions?page=3&limit=2", headers=clerk_headers).json
        assert last["pagination"]["has_more"] is False
        assert [t["reference_no"] for t in last["items"]] == ["CASH-R000"]

    def test_get_single_transaction(self, client, clerk_headers, paracetamol):
        self._ring_up(client, clerk_headers, paracetamol, 1)
        txn_id = db.session.query(Transaction.id).scalar()

        resp = client.get(f"/api/transactions/{txn_id}", headers=clerk_headers)
        assert resp.status_code == 200
        assert resp.json["transaction"]["items"][0]["quantity"] == 1

        assert client.get("/api/transactions/9999", headers=clerk_headers).status_code == 404

    def test_pharmacist_deletes_without_restoring_stock(
        self, client, clerk_headers, pharmacist_headers, paracetamol
    ):
        self._ring_up(client, clerk_headers, paracetamol, 1)
        txn_id = db.session.query(Transaction.id).scalar()

        resp = client.delete(f"/api/transactions/{txn_id}", headers=pharmacist_headers)

        assert resp.status_code == 200
        assert db.session.query(Transaction).count() == 0
        assert db.session.query(TransactionItem).count() == 0
        assert batch_stock(paracetamol) == [("LOT-A", 29), ("LOT-B", 20)]
        assert db.session.query(SecurityEvent).filter_by(event_type="TRANSACTION_DELETED").count() == 1

    def test_clerk_cannot_delete(self, client, clerk_headers, paracetamol):
        self._ring_up(client, clerk_headers, paracetamol, 1)
        txn_id = db.session.query(Transaction.id).scalar()

        resp = client.delete(f"/api/transactions/{txn_id}", headers=clerk_headers)
        assert resp.status_code == 403
        assert db.session.query(Transaction).count() == 1

    def test_delete_missing_transaction(self, client, admin_headers):
        assert client.delete("/api/transactions/424242", headers=admin_headers).status_code == 404


def test_service_rejects_non_dict_payload(app, clerk_user):
    with pytest.raises(TransactionError):
        transaction_service.create_transaction(user_id=clerk_user.id, payload=["not", "a", "dict"])
