import pytest

from errors import OrderTransitionError, TransitionForbidden
from order_workflow import ORDER_STATES, check_transition, find_transition, generate_order_id


def _order(status):
    return {"status": status, "buyer": "b", "seller": "s"}


@pytest.mark.parametrize("source,target,role", [
    ("pending", "paid", "buyer"),
    ("paid", "delivered", "seller"),
    ("delivered", "completed", "buyer"),
    ("pending", "cancelled", "seller"),
    ("paid", "refunded", "seller"),
    ("completed", "refunded", "admin"),
])
def test_allowed_transitions(source, target, role):
    assert check_transition(_order(source), target, role).target == target


@pytest.mark.parametrize("target,role", [
    ("paid", "seller"),
    ("completed", "seller"),
    ("delivered", "buyer"),
    ("refunded", "buyer"),
    ("cancelled", None),
])
def test_wrong_actor_is_forbidden(target, role):
    with pytest.raises(TransitionForbidden):
        check_transition(_order("pending"), target, role)


def test_completed_is_only_reachable_from_delivered():
    with pytest.raises(OrderTransitionError):
        check_transition(_order("pending"), "completed", "buyer")
    with pytest.raises(OrderTransitionError):
        check_transition(_order("paid"), "completed", "buyer")


def test_seller_cannot_refund_completed_order():
    with pytest.raises(TransitionForbidden):
        check_transition(_order("completed"), "refunded", "seller")


def test_terminal_states_have_no_way_back():
    for target in ORDER_STATES:
        assert find_transition("refunded", target) is None
        assert find_transition("completed", target) is None or target == "refunded"


def test_order_ids_are_unique_and_upper_case():
    ids = {generate_order_id() for _ in range(50)}
    assert len(ids) == 50
    assert all(i.startswith("CMP") and i == i.upper() for i in ids)
