from datetime import datetime

import pytest

from stashbook.models import DepositRecord, StockMovement
from stashbook.services import deposit_service, notification_service, weekly_paid_service
from stashbook.services.balance_service import balance_of
from stashbook.services.container_service import ensure_default_container
from stashbook.services.notification_service import NotificationDeliveryError, NotificationOutcome
from stashbook.validation import NotFoundError, ValidationError


@pytest.fixture
def sent(monkeypatch):
    """Capture relay calls instead of posting them."""
    calls = []

    def fake_notify(target_uid, payload, *, client=None):
        calls.append((target_uid, payload))
        return NotificationOutcome(delivered=True, status_code=200)

    monkeypatch.setattr(notification_service, "notify_deposit_event", fake_notify)
    return calls


def _deposit(member, product, **quantities):
    record, _warnings = deposit_service.create_deposit(
        member,
        product_id=product.id,
        quantities=quantities or {"quantity": 10},
    )
    return record


def _deposit_movements(db_session, record):
    return db_session.query(StockMovement).filter_by(reason="deposit", deposit_record_id=record.id).all()


def test_create_allocates_identifier_from_actor_folder(db_session, product, member, sent):
    first = _deposit(member, product, quantity=5)
    second = _deposit(member, product, efedrina=3)

    assert first.deposit_identifier == "07-01"
    assert second.deposit_identifier == "07-02"
    assert first.folder_number == "07"
    assert first.to_dict()["status"] == "pending"
    assert (first.meta_paid, first.manufactured, first.confirmed_flag, first.refused, first.confirmed) == (
        False, False, False, False, False,
    )

    assert [payload["severity"] for _uid, payload in sent] == ["submitted", "submitted"]
    assert sent[0][0] == member.uid


def test_create_with_explicit_folder(db_session, product, member, sent):
    record, _ = deposit_service.create_deposit(
        member, product_id=product.id, quantities={"quantity": 1}, folder_number="3",
    )
    assert record.deposit_identifier == "03-01"


def test_create_requires_a_positive_field(db_session, product, member, sent):
    with pytest.raises(ValidationError):
        deposit_service.create_deposit(member, product_id=product.id, quantities={"quantity": 0, "efedrina": 0})
    with pytest.raises(ValidationError):
        deposit_service.create_deposit(member, product_id=product.id, quantities={"quantity": -1, "efedrina": 5})
    with pytest.raises(ValidationError):
        deposit_service.create_deposit(member, product_id=product.id, quantities={"gold": 5})
    with pytest.raises(NotFoundError):
        deposit_service.create_deposit(member, product_id=9999, quantities={"quantity": 5})

    assert db_session.query(DepositRecord).count() == 0
    assert sent == []


def test_confirm_appends_exactly_one_movement(db_session, product, member, manager, sent):
    record = _deposit(member, product, quantity=12)

    result = deposit_service.toggle_flag(record.id, "confirmed", True, manager)

    movements = _deposit_movements(db_session, record)
    assert len(movements) == 1
    mov = movements[0]
    assert result.movement.id == mov.id
    assert mov.type == "in"
    assert mov.quantity == 12
    assert mov.container_id == ensure_default_container().id
    assert mov.note == f"Depósito confirmado de Membro Sete • Id {record.deposit_identifier}"
    assert balance_of(product.id) == 12

    assert result.deposit.confirmed_flag is True
    assert result.deposit.confirmed is True
    assert result.deposit.last_status_by_uid == manager.uid
    assert result.deposit.last_status_by_name == manager.display_name
    assert result.deposit.last_status_at is not None
    assert result.notified is True
    assert sent[-1][1]["severity"] == "approved"
    assert sent[-1][1]["status"] == "confirmed"


def test_reconfirming_does_not_duplicate_movement(db_session, product, member, manager, sent):
    record = _deposit(member, product, quantity=12)

    deposit_service.toggle_flag(record.id, "confirmed", True, manager)
    deposit_service.toggle_flag(record.id, "confirmed", False, manager)
    again = deposit_service.toggle_flag(record.id, "confirmed", True, manager)

    assert again.movement is None
    assert len(_deposit_movements(db_session, record)) == 1
    assert balance_of(product.id) == 12


def test_setting_same_value_only_restamps_audit(db_session, product, member, manager, admin, sent):
    record = _deposit(member, product, quantity=4)
    deposit_service.toggle_flag(record.id, "confirmed", True, manager)
    calls_before = len(sent)

    result = deposit_service.toggle_flag(record.id, "confirmed", True, admin)

    assert result.plan.changed is False
    assert result.movement is None
    assert result.deposit.last_status_by_uid == admin.uid
    assert len(sent) == calls_before
    assert len(_deposit_movements(db_session, record)) == 1


def test_confirm_without_quantity_moves_no_stock(db_session, product, member, manager, sent):
    record = _deposit(member, product, efedrina=30)

    result = deposit_service.toggle_flag(record.id, "confirmed", True, manager)

    assert result.movement is None
    assert _deposit_movements(db_session, record) == []


def test_refused_then_confirmed_stays_refused(db_session, product, member, manager, sent):
    record = _deposit(member, product, quantity=9)

    deposit_service.toggle_flag(record.id, "refused", True, manager)
    result = deposit_service.toggle_flag(record.id, "confirmed", True, manager)

    assert result.deposit.to_dict()["status"] == "refused"
    assert result.movement is None
    assert _deposit_movements(db_session, record) == []
    assert [payload["severity"] for _uid, payload in sent[1:]] == ["refused", "approved"]


def test_unrefusing_confirmed_record_books_stock_once(db_session, product, member, manager, sent):
    record = _deposit(member, product, quantity=9)
    deposit_service.toggle_flag(record.id, "refused", True, manager)
    deposit_service.toggle_flag(record.id, "confirmed", True, manager)

    result = deposit_service.toggle_flag(record.id, "refused", False, manager)

    assert result.movement is not None
    assert result.deposit.to_dict()["status"] == "confirmed"
    assert len(_deposit_movements(db_session, record)) == 1


def test_manufactured_after_confirmed_notifies_shipped(db_session, product, member, manager, sent):
    record = _deposit(member, product, quantity=2)
    deposit_service.toggle_flag(record.id, "confirmed", True, manager)

    result = deposit_service.toggle_flag(record.id, "manufactured", True, manager)

    assert result.notified is True
    assert sent[-1][1]["severity"] == "shipped"
    assert sent[-1][1]["manufactured"] is True
    assert sent[-1][1]["confirmed"] is True


def test_meta_paid_credits_created_week(db_session, product, member, manager, sent):
    record = _deposit(member, product, efedrina=20, valor_dinheiro=500)
    record.created_at = datetime(2025, 1, 15, 12, 0)
    db_session.commit()

    result = deposit_service.toggle_flag(record.id, "meta_paid", True, manager)

    assert result.aggregate.id == f"{member.uid}_2025-W03"
    assert weekly_paid_service.get_weekly_totals(member.uid, "2025-W03") == {"efedrina": 20, "dinheiro": 500}
    assert result.deposit.meta_paid_week == "2025-W03"
    assert result.notified is False


def test_meta_paid_toggle_is_symmetric(db_session, product, member, manager, sent):
    earlier = _deposit(member, product, efedrina=5, folhas_papel=2)
    earlier.created_at = datetime(2025, 1, 14)
    record = _deposit(member, product, quantity=3, efedrina=20, po_aluminio=4, embalagem_plastica=1, folhas_papel=7)
    record.created_at = datetime(2025, 1, 15)
    db_session.commit()

    deposit_service.toggle_flag(earlier.id, "meta_paid", True, manager)
    before = weekly_paid_service.get_weekly_totals(member.uid, "2025-W03")

    deposit_service.toggle_flag(record.id, "meta_paid", True, manager)
    assert weekly_paid_service.get_weekly_totals(member.uid, "2025-W03") == {
        "efedrina": 25,
        "poAluminio": 4,
        "embalagemPlastica": 1,
        "folhaPapel": 9,
    }

    deposit_service.toggle_flag(record.id, "meta_paid", False, manager)
    assert weekly_paid_service.get_weekly_totals(member.uid, "2025-W03") == before


def test_delete_keeps_ledger_and_aggregate(db_session, product, member, manager, sent):
    record = _deposit(member, product, quantity=6, efedrina=2)
    deposit_service.toggle_flag(record.id, "confirmed", True, manager)
    deposit_service.toggle_flag(record.id, "meta_paid", True, manager)
    week = record.meta_paid_week
    record_id = record.id

    identifier = deposit_service.delete_deposit(record_id)

    assert identifier == "07-01"
    assert db_session.get(DepositRecord, record_id) is None
    assert db_session.query(StockMovement).filter_by(deposit_record_id=record_id).count() == 1
    assert balance_of(product.id) == 6
    assert weekly_paid_service.get_weekly_totals(member.uid, week) == {"efedrina": 2}

    with pytest.raises(NotFoundError):
        deposit_service.delete_deposit(record_id)


def test_notification_failure_becomes_warning(db_session, product, member, manager, monkeypatch):
    record, _ = deposit_service.create_deposit(
        member, product_id=product.id, quantities={"quantity": 8}, send_notification=False,
    )

    def failing_notify(target_uid, payload, *, client=None):
        raise NotificationDeliveryError("Relay unreachable: timeout")

    monkeypatch.setattr(notification_service, "notify_deposit_event", failing_notify)

    result = deposit_service.toggle_flag(record.id, "confirmed", True, manager)

    assert result.notified is False
    assert result.warnings == ["Notification not delivered: Relay unreachable: timeout"]
    # Flag and movement are committed regardless
    db_session.expire_all()
    assert db_session.get(DepositRecord, record.id).confirmed_flag is True
    assert len(_deposit_movements(db_session, record)) == 1


def test_toggle_validates_input(db_session, product, member, manager, sent):
    record = _deposit(member, product, quantity=1)

    with pytest.raises(ValidationError):
        deposit_service.toggle_flag(record.id, "shipped", True, manager)
    with pytest.raises(ValidationError):
        deposit_service.toggle_flag(record.id, "confirmed", "yes", manager)
    with pytest.raises(NotFoundError):
        deposit_service.toggle_flag(9999, "confirmed", True, manager)


def test_list_deposits_by_derived_status(db_session, product, member, manager, sent):
    pending = _deposit(member, product, quantity=1)
    confirmed = _deposit(member, product, quantity=1)
    refused = _deposit(member, product, quantity=1)
    paid = _deposit(member, product, efedrina=1)

    deposit_service.toggle_flag(confirmed.id, "confirmed", True, manager)
    deposit_service.toggle_flag(refused.id, "confirmed", True, manager)
    deposit_service.toggle_flag(refused.id, "refused", True, manager)
    deposit_service.toggle_flag(paid.id, "meta_paid", True, manager)

    def ids(status):
        return {r.id for r in deposit_service.list_deposits(status=status)}

    assert ids("pending") == {pending.id}
    assert ids("confirmed") == {confirmed.id}
    assert ids("refused") == {refused.id}
    assert ids("meta_paid") == {paid.id}
    assert ids("manufactured") == set()
    assert len(deposit_service.list_deposits(created_by_uid=member.uid)) == 4
    assert deposit_service.list_deposits(created_by_uid="someone-else") == []

    with pytest.raises(ValidationError):
        deposit_service.list_deposits(status="shipped")


def test_attach_proof(db_session, product, member, sent):
    record = _deposit(member, product, quantity=1)

    updated = deposit_service.attach_proof(record.id, "https://files.example/proof.png", "2025-02-01T12:00:00Z")

    assert updated.proof_url == "https://files.example/proof.png"
    assert updated.proof_expires_at == datetime(2025, 2, 1, 12, 0)
    with pytest.raises(ValidationError):
        deposit_service.attach_proof(record.id, "  ")
