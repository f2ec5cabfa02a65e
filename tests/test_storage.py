"""
Tests for fetched-record persistence.
"""

import pytest

from erpsync.database import SyncedRecord, session_factory
from erpsync.errors import PersistenceFailure
from erpsync.storage import RecordWriter, diff_dict, record_key_for, save_records


class TestDiffDict:
    def test_reports_changed_keys(self):
        changed = diff_dict({"a": 1, "b": 2}, {"a": 1, "b": 3, "c": 4})
        assert changed == {"b": {"old": 2, "new": 3}, "c": {"old": None, "new": 4}}

    def test_equal_dicts(self):
        assert diff_dict({"a": 1}, {"a": 1}) == {}


class TestRecordKey:
    def test_identity_fields(self):
        item = {"amazon_order_id": "111-1", "sku": "A"}
        assert record_key_for(item, ("amazon_order_id", "sku")) == "111-1|A"

    def test_missing_field_falls_back_to_hash(self):
        key = record_key_for({"amazon_order_id": "111-1"}, ("amazon_order_id", "sku"))
        assert key.startswith("sha1:")

    def test_hash_ignores_key_order(self):
        assert record_key_for({"a": 1, "b": 2}) == record_key_for({"b": 2, "a": 1})


class TestSaveRecords:
    def test_new_then_no_change_then_updated(self, sessions):
        items = [{"order_sn": "PO1", "qty": 1}, {"order_sn": "PO2", "qty": 2}]

        first = save_records(sessions, "acc-1", "purchase_orders", "", items, key_fields=("order_sn",))
        second = save_records(sessions, "acc-1", "purchase_orders", "", items, key_fields=("order_sn",))
        third = save_records(sessions, "acc-1", "purchase_orders", "",
                             [{"order_sn": "PO1", "qty": 5}], key_fields=("order_sn",))

        assert first == {"new": 2, "updated": 0, "no-change": 0}
        assert second == {"new": 0, "updated": 0, "no-change": 2}
        assert third == {"new": 0, "updated": 1, "no-change": 0}

        with sessions() as session:
            row = session.get(SyncedRecord, ("acc-1", "purchase_orders", "", "PO1"))
            assert row.payload == {"order_sn": "PO1", "qty": 5}

    def test_duplicates_in_batch_collapse(self, sessions):
        items = [{"order_sn": "PO1", "qty": 1}, {"order_sn": "PO1", "qty": 2}]
        counts = save_records(sessions, "acc-1", "purchase_orders", "", items, key_fields=("order_sn",))
        assert counts["new"] == 1

        with sessions() as session:
            assert session.get(SyncedRecord, ("acc-1", "purchase_orders", "", "PO1")).payload["qty"] == 2

    def test_shards_kept_apart(self, sessions):
        item = {"amazon_order_id": "111-1", "sku": "A"}
        save_records(sessions, "acc-1", "all_orders", "101", [item], key_fields=("amazon_order_id", "sku"))
        save_records(sessions, "acc-1", "all_orders", "102", [item], key_fields=("amazon_order_id", "sku"))

        with sessions() as session:
            assert session.query(SyncedRecord).count() == 2

    def test_database_error_is_persistence_failure(self, tmp_path):
        broken = session_factory(tmp_path / "no_tables.db")
        with pytest.raises(PersistenceFailure):
            save_records(broken, "acc-1", "purchase_orders", "", [{"order_sn": "PO1"}], key_fields=("order_sn",))


class TestRecordWriter:
    def test_accumulates_totals(self, sessions):
        writer = RecordWriter(sessions, "acc-1", "inbound_orders", "", key_fields=("order_sn",))
        writer([{"order_sn": "IB1"}, {"order_sn": "IB2"}])
        writer([{"order_sn": "IB2"}, {"order_sn": "IB3"}])
        writer([])

        assert writer.totals == {"new": 3, "updated": 0, "no-change": 1}
