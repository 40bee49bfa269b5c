import pytest
from bson import ObjectId

from ledger import InsufficientPoints, apply_points, level_for_points, payer_and_payee, transfer_points


@pytest.mark.parametrize("points,level", [
    (0, "Bronze Swapper"),
    (49, "Bronze Swapper"),
    (50, "Silver Swapper"),
    (199, "Silver Swapper"),
    (200, "Gold Swapper"),
    (500, "Platinum Swapper"),
    (999, "Platinum Swapper"),
    (1000, "Diamond Swapper"),
    (25000, "Diamond Swapper"),
])
def test_level_thresholds(points, level):
    assert level_for_points(points) == level


def _user(db, points):
    return str(db["user"].insert_one({"points": points, "level": level_for_points(points)}).inserted_id)


def test_apply_points_refreshes_level(db):
    uid = _user(db, 40)
    doc = apply_points(db, uid, 15)
    assert doc["points"] == 55
    stored = db["user"].find_one({"_id": ObjectId(uid)})
    assert stored["level"] == "Silver Swapper"

    apply_points(db, uid, -10)
    stored = db["user"].find_one({"_id": ObjectId(uid)})
    assert stored["points"] == 45
    assert stored["level"] == "Bronze Swapper"


def test_debit_never_goes_negative(db):
    uid = _user(db, 5)
    assert apply_points(db, uid, -6) is None
    assert db["user"].find_one({"_id": ObjectId(uid)})["points"] == 5


def test_transfer_moves_exact_amount(db):
    payer, payee = _user(db, 300), _user(db, 10)
    transfer_points(db, payer, payee, 120)
    assert db["user"].find_one({"_id": ObjectId(payer)})["points"] == 180
    payee_doc = db["user"].find_one({"_id": ObjectId(payee)})
    assert payee_doc["points"] == 130
    assert payee_doc["level"] == "Silver Swapper"


def test_transfer_refused_when_payer_short(db):
    payer, payee = _user(db, 20), _user(db, 10)
    with pytest.raises(InsufficientPoints):
        transfer_points(db, payer, payee, 50)
    assert db["user"].find_one({"_id": ObjectId(payee)})["points"] == 10


def test_payer_and_payee_by_swap_type():
    swap = {"requester_id": "r", "provider_id": "p", "points_involved": 30}
    assert payer_and_payee({**swap, "swap_type": "item_for_points"}) == ("r", "p")
    assert payer_and_payee({**swap, "swap_type": "points_for_item"}) == ("p", "r")
    assert payer_and_payee({**swap, "swap_type": "item_for_item"}) is None
    assert payer_and_payee({**swap, "swap_type": "item_for_points", "points_involved": 0}) is None
