import uuid

import pytest

from stashbook.models import StockMovement
from stashbook.services import transfer_service
from stashbook.services.balance_service import InsufficientBalance, balance_of
from stashbook.services.ledger_service import append_movement
from stashbook.services.transfer_service import PartialTransferFailure
from stashbook.validation import NotFoundError, ValidationError


@pytest.fixture
def stocked(db_session, product, containers, admin):
    """Container A holds 100 units."""
    a, b = containers
    transfer_service.record_production(product_id=product.id, container_id=a.id, quantity=100, actor=admin)
    return product, a, b


def _movement_count(db_session, reason=None):
    q = db_session.query(StockMovement)
    if reason:
        q = q.filter_by(reason=reason)
    return q.count()


def test_transfer_moves_quantity_between_containers(db_session, stocked, member):
    product, a, b = stocked

    result = transfer_service.transfer_stock(
        product_id=product.id, from_container_id=a.id, to_container_id=b.id, quantity=40, actor=member,
    )

    assert balance_of(product.id, a.id) == 60
    assert balance_of(product.id, b.id) == 40
    assert _movement_count(db_session, reason="transfer") == 2

    assert result.out_movement.type == "out"
    assert result.in_movement.type == "in"
    assert result.out_movement.transfer_ref == result.in_movement.transfer_ref == result.transfer_ref
    assert result.in_movement.paired_movement_id == result.out_movement.id
    assert result.out_movement.note == "Transferência para: Baú B"
    assert result.in_movement.note == "Transferência de: Baú A"


def test_transfer_keeps_product_total(db_session, stocked, member):
    product, a, b = stocked
    before = balance_of(product.id)

    transfer_service.transfer_stock(
        product_id=product.id, from_container_id=a.id, to_container_id=b.id, quantity=100, actor=member,
    )
    transfer_service.transfer_stock(
        product_id=product.id, from_container_id=b.id, to_container_id=a.id, quantity=30, actor=member,
    )

    assert balance_of(product.id) == before
    assert balance_of(product.id, a.id) == 30
    assert balance_of(product.id, b.id) == 70


def test_transfer_above_balance_writes_nothing(db_session, stocked, member):
    product, a, b = stocked

    with pytest.raises(InsufficientBalance) as excinfo:
        transfer_service.transfer_stock(
            product_id=product.id, from_container_id=a.id, to_container_id=b.id, quantity=101, actor=member,
        )

    assert excinfo.value.available == 100
    assert _movement_count(db_session, reason="transfer") == 0
    assert balance_of(product.id, a.id) == 100


@pytest.mark.parametrize("quantity", [0, -5])
def test_transfer_rejects_non_positive_quantity(db_session, stocked, member, quantity):
    product, a, b = stocked
    with pytest.raises(ValidationError):
        transfer_service.transfer_stock(
            product_id=product.id, from_container_id=a.id, to_container_id=b.id, quantity=quantity, actor=member,
        )


def test_transfer_rejects_same_container(db_session, stocked, member):
    product, a, _ = stocked
    with pytest.raises(ValidationError):
        transfer_service.transfer_stock(
            product_id=product.id, from_container_id=a.id, to_container_id=a.id, quantity=1, actor=member,
        )


def test_transfer_to_unknown_container(db_session, stocked, member):
    product, a, _ = stocked
    with pytest.raises(NotFoundError):
        transfer_service.transfer_stock(
            product_id=product.id, from_container_id=a.id, to_container_id=9999, quantity=1, actor=member,
        )
    assert _movement_count(db_session, reason="transfer") == 0


def test_transfer_from_unknown_container(db_session, stocked, member):
    product, _, b = stocked
    with pytest.raises(NotFoundError):
        transfer_service.transfer_stock(
            product_id=product.id, from_container_id=9999, to_container_id=b.id, quantity=1, actor=member,
        )
    assert _movement_count(db_session, reason="transfer") == 0
    assert balance_of(product.id, b.id) == 0


def test_one_sided_transfer_is_rolled_back(db_session, stocked, member, monkeypatch):
    product, a, b = stocked
    real_append = transfer_service.append_movement

    def drop_inbound_leg(**kwargs):
        if kwargs["type"] == "in":
            return None
        return real_append(**kwargs)

    monkeypatch.setattr(transfer_service, "append_movement", drop_inbound_leg)

    with pytest.raises(PartialTransferFailure):
        transfer_service.transfer_stock(
            product_id=product.id, from_container_id=a.id, to_container_id=b.id, quantity=10, actor=member,
        )

    assert _movement_count(db_session, reason="transfer") == 0
    assert balance_of(product.id, a.id) == 100


def test_sale_above_balance_is_rejected(db_session, stocked, member):
    product, a, b = stocked
    transfer_service.transfer_stock(
        product_id=product.id, from_container_id=a.id, to_container_id=b.id, quantity=40, actor=member,
    )
    assert balance_of(product.id, a.id) == 60

    with pytest.raises(InsufficientBalance):
        transfer_service.record_sale(product_id=product.id, container_id=a.id, quantity=150, actor=member)

    assert balance_of(product.id, a.id) == 60
    assert _movement_count(db_session, reason="sale") == 0


def test_sale_appends_single_out_movement(db_session, stocked, member):
    product, a, _ = stocked

    mov = transfer_service.record_sale(
        product_id=product.id, container_id=a.id, quantity=15, actor=member, customer="Família Rocha",
    )

    assert mov.type == "out"
    assert mov.reason == "sale"
    assert mov.note == "Venda para: Família Rocha"
    assert balance_of(product.id, a.id) == 85


def test_admin_withdrawal_from_container_and_global(db_session, stocked, admin):
    product, a, _ = stocked

    transfer_service.record_admin_withdrawal(product_id=product.id, quantity=20, actor=admin, container_id=a.id)
    assert balance_of(product.id, a.id) == 80

    mov = transfer_service.record_admin_withdrawal(product_id=product.id, quantity=80, actor=admin, note="Auditoria")
    assert mov.container_id is None
    assert mov.reason == "admin_withdrawal"
    assert balance_of(product.id) == 0

    with pytest.raises(InsufficientBalance):
        transfer_service.record_admin_withdrawal(product_id=product.id, quantity=1, actor=admin)


def test_record_reversal_commits_offsetting_entry(db_session, stocked, admin):
    product, a, _ = stocked
    sale = transfer_service.record_sale(product_id=product.id, container_id=a.id, quantity=10, actor=admin)

    reversal = transfer_service.record_reversal(sale.id, admin, note="Venda cancelada")

    assert reversal.type == "in"
    assert reversal.note == "Venda cancelada"
    assert balance_of(product.id, a.id) == 100


def test_unpaired_transfer_is_detected_and_compensated(db_session, stocked, admin):
    product, a, _ = stocked
    ref = uuid.uuid4().hex
    append_movement(
        type="out", reason="transfer", quantity=25, product_id=product.id, container_id=a.id,
        actor=admin, transfer_ref=ref,
    )
    db_session.commit()
    assert balance_of(product.id, a.id) == 75

    unpaired = transfer_service.find_unpaired_transfers()
    assert [item["transfer_ref"] for item in unpaired] == [ref]

    compensations = transfer_service.repair_unpaired_transfer(ref, admin)

    assert len(compensations) == 1
    assert compensations[0].type == "in"
    assert balance_of(product.id, a.id) == 100
    assert transfer_service.find_unpaired_transfers() == []

    with pytest.raises(ValidationError):
        transfer_service.repair_unpaired_transfer(ref, admin)


def test_complete_transfer_is_not_repaired(db_session, stocked, admin):
    product, a, b = stocked
    result = transfer_service.transfer_stock(
        product_id=product.id, from_container_id=a.id, to_container_id=b.id, quantity=5, actor=admin,
    )

    assert transfer_service.find_unpaired_transfers() == []
    with pytest.raises(ValidationError):
        transfer_service.repair_unpaired_transfer(result.transfer_ref, admin)
