import datetime
from decimal import Decimal

import pytest

from conftest import make_discount, make_item
from domain.models import FLAT, PERCENTAGE, Bill, BillStatus
from services.billing_service import (
    RETRY_HINT,
    BillFinalizedError,
    add_item,
    bill_header,
    filter_live_discounts,
    finalize_bill,
    item_row,
    load_bill,
    recompute,
    remove_item,
    save_draft,
    start_bill,
    update_item,
    validate_line_item,
)
from services.pricing_service import compute_bill_totals


@pytest.fixture
def kurti_pair():
    return make_item(quantity=2, unit_price=500, discount_percent=10, tax_rate=12,
                     category="Kurti", product_name="Anarkali", source="inventory",
                     product_id=1024, variant_id=77)


@pytest.fixture
def flat100():
    return make_discount("FLAT100", FLAT, 100)


@pytest.fixture
def draft(fake_db, kurti_pair):
    fake_db.tables["bills"] = [{"billid": 7, "finalized": False}]
    return Bill(bill_id=7, items=[kurti_pair], selected_codes=["FLAT100"])


# ---------------------------------------------------------------------------
# Validation and editing
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "kwargs,message",
    [
        ({"quantity": 0}, "Quantity must be at least 1"),
        ({"unit_price": -1}, "Price cannot be negative"),
        ({"discount_percent": 101}, "Discount must be between 0 and 100 percent"),
        ({"discount_percent": -5}, "Discount must be between 0 and 100 percent"),
        ({"stitching_charge": -10}, "Stitching / alteration charges cannot be negative"),
        ({"tax_rate": -12}, "GST rate cannot be negative"),
    ],
)
def test_validate_line_item_rejects_bad_input(kwargs, message):
    assert validate_line_item(make_item(**kwargs)) == (False, message)


def test_validate_line_item_accepts_good_input(kurti_pair):
    assert validate_line_item(kurti_pair) == (True, "")


def test_add_update_remove(kurti_pair):
    bill = Bill(bill_id=1)
    add_item(bill, kurti_pair)
    add_item(bill, make_item(quantity=1, unit_price=300))

    updated = update_item(bill, 0, discount_percent=20, stitching_charge="150")
    assert updated.discount_percent == Decimal("20")
    assert updated.stitching_charge == Decimal("150")
    assert updated.product_name == "Anarkali"
    assert bill.items[0] is updated

    removed = remove_item(bill, 1)
    assert removed.unit_price == Decimal("300")
    assert len(bill.items) == 1


def test_add_item_rejects_invalid_item():
    bill = Bill(bill_id=1)
    with pytest.raises(ValueError, match="Quantity"):
        add_item(bill, make_item(quantity=0))
    assert bill.items == []


def test_update_item_rejects_invalid_change(kurti_pair):
    bill = Bill(bill_id=1, items=[kurti_pair])
    with pytest.raises(ValueError, match="Discount"):
        update_item(bill, 0, discount_percent=150)
    assert bill.items[0] is kurti_pair


def test_update_item_rejects_unknown_field(kurti_pair):
    bill = Bill(bill_id=1, items=[kurti_pair])
    with pytest.raises(ValueError, match="variant_id"):
        update_item(bill, 0, variant_id=3)


def test_finalized_bill_cannot_be_edited(kurti_pair, flat100):
    bill = Bill(bill_id=5, items=[kurti_pair], status=BillStatus.FINALIZED)

    with pytest.raises(BillFinalizedError):
        add_item(bill, make_item(quantity=1, unit_price=10))
    with pytest.raises(BillFinalizedError):
        update_item(bill, 0, quantity=3)
    with pytest.raises(BillFinalizedError):
        remove_item(bill, 0)
    with pytest.raises(BillFinalizedError):
        recompute(bill, [flat100])


def test_recompute_applies_only_the_selected_codes():
    auto = make_discount("WELCOME", FLAT, 50, auto_apply=True)
    bill = Bill(bill_id=1, items=[make_item(quantity=1, unit_price=1000)])

    totals = recompute(bill, [auto])

    assert totals.overall_discount_amount == Decimal("0")
    assert bill.totals is totals
    header = bill_header(bill, totals, finalized=False)
    assert header["applied_codes"] == []
    assert header["overall_discount"] == 0.0


def test_unticked_auto_apply_code_stays_off(fake_db):
    auto = make_discount("WELCOME", FLAT, 50, auto_apply=True)
    _, _, bill = start_bill([auto])
    add_item(bill, make_item(quantity=1, unit_price=1000))
    assert recompute(bill, [auto]).overall_discount_amount == Decimal("50")

    bill.selected_codes.remove("WELCOME")
    totals = recompute(bill, [auto])

    assert totals.overall_discount_amount == Decimal("0")
    assert totals.grand_total == Decimal("1120")
    assert bill_header(bill, totals, finalized=False)["applied_codes"] == []


def test_filter_live_discounts():
    today = datetime.date(2026, 10, 18)
    definitions = [
        make_discount("ALWAYS", FLAT, 10),
        make_discount("DIWALI", FLAT, 10, start_date=datetime.date(2026, 10, 15), end_date=datetime.date(2026, 10, 18)),
        make_discount("LATER", FLAT, 10, start_date=datetime.date(2026, 11, 1)),
        make_discount("OVER", FLAT, 10, end_date=datetime.date(2026, 10, 17)),
    ]
    assert [d.code for d in filter_live_discounts(definitions, today)] == ["ALWAYS", "DIWALI"]


# ---------------------------------------------------------------------------
# Persisted shapes
# ---------------------------------------------------------------------------

def test_item_row_stores_inputs_and_priced_result(kurti_pair):
    row = item_row(7, kurti_pair)

    assert row["billid"] == 7
    assert row["productid"] == 1024
    assert row["variantid"] == 77
    assert row["quantity"] == 2
    assert row["mrp"] == 500.0
    assert row["discount_pct"] == 10.0
    assert row["discount_total"] == 100.0
    assert row["subtotal"] == 900.0
    assert row["gst_rate"] == 12.0
    assert row["gst_amount"] == 108.0
    assert row["total"] == 1008.0


def test_bill_header_carries_the_totals(kurti_pair, flat100):
    bill = Bill(bill_id=7, customer_id=3, notes="", items=[kurti_pair], selected_codes=["FLAT100"])
    totals = compute_bill_totals(bill.items, bill.selected_codes, [flat100])

    header = bill_header(bill, totals, finalized=True)

    assert header == {
        "customerid": 3,
        "notes": None,
        "finalized": True,
        "applied_codes": ["FLAT100"],
        "items_subtotal": 1000.0,
        "item_discount_total": 100.0,
        "overall_discount": 100.0,
        "discount_total": 200.0,
        "taxable_total": 800.0,
        "gst_total": 96.0,
        "totalamount": 896.0,
    }


# ---------------------------------------------------------------------------
# Store round trips
# ---------------------------------------------------------------------------

def test_start_bill_creates_a_draft_header(fake_db):
    ok, msg, bill = start_bill()

    assert ok
    assert bill.status == BillStatus.DRAFT
    assert bill.selected_codes == []
    assert fake_db.tables["bills"] == [{"finalized": False, "billid": bill.bill_id}]


def test_start_bill_preselects_auto_apply_codes(fake_db):
    definitions = [
        make_discount("FLAT100", FLAT, 100),
        make_discount("WELCOME", FLAT, 50, auto_apply=True),
        make_discount("RETIRED", FLAT, 50, auto_apply=True, active=False),
    ]

    ok, _, bill = start_bill(definitions)

    assert ok
    assert bill.selected_codes == ["WELCOME"]


def test_loaded_draft_keeps_its_stored_selection(fake_db, kurti_pair):
    auto = make_discount("WELCOME", FLAT, 50, auto_apply=True)
    fake_db.tables["bills"] = [{"billid": 6, "finalized": False, "applied_codes": []}]
    fake_db.tables["bill_items"] = [item_row(6, kurti_pair)]

    _, _, bill = load_bill(6)

    assert bill.selected_codes == []
    assert recompute(bill, [auto]).overall_discount_amount == Decimal("0")


def test_save_draft_writes_items_and_header(fake_db, draft, flat100):
    ok, msg = save_draft(draft, [flat100])

    assert ok, msg
    assert msg == "Draft bill #7 saved"
    assert len(fake_db.tables["bill_items"]) == 1
    header = fake_db.tables["bills"][0]
    assert header["finalized"] is False
    assert header["totalamount"] == 896.0
    assert draft.status == BillStatus.DRAFT


def test_save_draft_replaces_previous_items(fake_db, draft, flat100):
    fake_db.tables["bill_items"] = [
        {"itemid": 1, "billid": 7, "quantity": 9},
        {"itemid": 2, "billid": 8, "quantity": 1},
    ]

    save_draft(draft, [flat100])

    rows_for_bill = [r for r in fake_db.tables["bill_items"] if r["billid"] == 7]
    assert [r["quantity"] for r in rows_for_bill] == [2]
    assert any(r["billid"] == 8 for r in fake_db.tables["bill_items"])
    assert fake_db.calls[:2] == [("bill_items", "delete"), ("bill_items", "insert")]


def test_finalize_bill(fake_db, draft, flat100):
    ok, msg, totals = finalize_bill(draft, [flat100])

    assert ok, msg
    assert msg == "Bill #7 saved"
    assert totals.grand_total == Decimal("896")
    assert draft.status == BillStatus.FINALIZED
    assert draft.totals == totals

    header = fake_db.tables["bills"][0]
    assert header["finalized"] is True
    assert header["gst_total"] == 96.0
    assert header["discount_total"] == 200.0

    with pytest.raises(BillFinalizedError):
        add_item(draft, make_item(quantity=1, unit_price=10))


def test_finalize_twice_is_refused(fake_db, draft, flat100):
    finalize_bill(draft, [flat100])
    ok, msg, totals = finalize_bill(draft, [flat100])

    assert not ok
    assert "already finalized" in msg
    assert totals.grand_total == Decimal("896")


def test_finalize_requires_items(fake_db):
    ok, msg, totals = finalize_bill(Bill(bill_id=7), [])

    assert not ok
    assert msg == "A bill requires one or more items."
    assert totals is None
    assert fake_db.calls == []


def test_finalize_requires_bill_id(kurti_pair):
    ok, msg, _ = finalize_bill(Bill(items=[kurti_pair]), [])
    assert not ok
    assert "No bill id yet" in msg


def test_failed_header_update_keeps_bill_in_draft(fake_db, draft, flat100):
    fake_db.fail_on.add(("bills", "update"))

    ok, msg, totals = finalize_bill(draft, [flat100])

    assert not ok
    assert totals is None
    assert msg.endswith(RETRY_HINT)
    assert draft.status == BillStatus.DRAFT
    assert fake_db.tables["bills"][0]["finalized"] is False


def test_failed_item_insert_skips_header_update(fake_db, draft, flat100):
    fake_db.fail_on.add(("bill_items", "insert"))

    ok, msg, _ = finalize_bill(draft, [flat100])

    assert not ok
    assert msg.startswith("Save failed:")
    assert ("bills", "update") not in fake_db.calls
    assert draft.status == BillStatus.DRAFT


def test_retry_after_failure_succeeds(fake_db, draft, flat100):
    fake_db.fail_on.add(("bills", "update"))
    assert not finalize_bill(draft, [flat100])[0]

    fake_db.fail_on.clear()
    ok, _, _ = finalize_bill(draft, [flat100])

    assert ok
    assert len([r for r in fake_db.tables["bill_items"] if r["billid"] == 7]) == 1


def test_load_finalized_bill_keeps_stored_totals(fake_db, kurti_pair, flat100):
    fake_db.tables["bills"] = [
        {
            "billid": 3,
            "customerid": 5,
            "notes": "alteration by Friday",
            "finalized": True,
            "applied_codes": ["FLAT100"],
            "items_subtotal": 1000.0,
            "item_discount_total": 100.0,
            "overall_discount": 100.0,
            "taxable_total": 800.0,
            "gst_total": 96.0,
            "totalamount": 896.0,
        }
    ]
    fake_db.tables["bill_items"] = [item_row(3, kurti_pair)]

    ok, msg, bill = load_bill(3)

    assert ok, msg
    assert bill.is_finalized
    assert bill.customer_id == 5
    assert bill.notes == "alteration by Friday"
    assert bill.selected_codes == ["FLAT100"]
    assert len(bill.items) == 1
    assert bill.items[0].quantity == 2
    assert bill.items[0].discount_percent == Decimal("10")
    assert bill.totals.grand_total == Decimal("896")
    assert bill.totals.pre_overall_taxable == Decimal("900")


def test_load_draft_bill_can_be_recomputed(fake_db, kurti_pair, flat100):
    fake_db.tables["bills"] = [{"billid": 4, "finalized": False, "applied_codes": ["FLAT100"]}]
    fake_db.tables["bill_items"] = [item_row(4, kurti_pair)]

    ok, _, bill = load_bill(4)

    assert ok
    assert bill.status == BillStatus.DRAFT
    assert bill.totals is None
    assert recompute(bill, [flat100]).grand_total == Decimal("896")


def test_load_missing_bill(fake_db):
    ok, msg, bill = load_bill(404)

    assert not ok
    assert msg == "Bill #404 not found"
    assert bill is None


def test_percentage_code_on_saved_draft(fake_db, kurti_pair):
    fake_db.tables["bills"] = [{"billid": 9, "finalized": False}]
    bill = Bill(bill_id=9, items=[kurti_pair], selected_codes=["P10"])

    ok, _ = save_draft(bill, [make_discount("P10", PERCENTAGE, 10)])

    assert ok
    # 900 - 90 = 810 taxable, 12% GST = 97.20
    assert fake_db.tables["bills"][0]["totalamount"] == 907.2
