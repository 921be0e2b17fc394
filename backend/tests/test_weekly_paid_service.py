from datetime import date, datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from stashbook.services import weekly_paid_service


@pytest.mark.parametrize("value, expected", [
    (date(2025, 1, 15), "2025-W03"),
    (date(2025, 1, 13), "2025-W03"),
    (date(2025, 1, 12), "2025-W02"),
    # Year boundaries follow the Thursday rule
    (date(2021, 1, 3), "2020-W53"),
    (date(2021, 1, 4), "2021-W01"),
    (date(2024, 12, 30), "2025-W01"),
    (date(2026, 12, 31), "2026-W53"),
    (datetime(2025, 1, 15, 23, 59), "2025-W03"),
])
def test_iso_week_key(value, expected):
    assert weekly_paid_service.iso_week_key(value) == expected


def test_iso_week_key_converts_aware_datetimes_to_utc():
    # Monday 00:30 in UTC+3 is still Sunday in UTC
    plus_three = timezone(timedelta(hours=3))
    value = datetime(2025, 1, 13, 0, 30, tzinfo=plus_three)
    assert weekly_paid_service.iso_week_key(value) == "2025-W02"


def test_aggregate_key():
    assert weekly_paid_service.aggregate_key("U", "2025-W03") == "U_2025-W03"


def test_paid_totals_use_persisted_resource_keys():
    record = SimpleNamespace(
        quantity=50,
        efedrina=20,
        po_aluminio=0,
        embalagem_plastica=3,
        folhas_papel=None,
        valor_dinheiro=500,
    )
    assert weekly_paid_service.paid_totals_for(record) == {
        "efedrina": 20,
        "embalagemPlastica": 3,
        "dinheiro": 500,
    }


def test_apply_delta_increments_and_decrements(db_session):
    weekly_paid_service.apply_paid_delta("U", "2025-W03", {"efedrina": 20, "dinheiro": 500}, 1)
    weekly_paid_service.apply_paid_delta("U", "2025-W03", {"efedrina": 5}, 1)
    db_session.commit()

    assert weekly_paid_service.get_weekly_totals("U", "2025-W03") == {"efedrina": 25, "dinheiro": 500}

    weekly_paid_service.apply_paid_delta("U", "2025-W03", {"efedrina": 20, "dinheiro": 500}, -1)
    db_session.commit()

    assert weekly_paid_service.get_weekly_totals("U", "2025-W03") == {"efedrina": 5}


def test_apply_delta_ignores_empty_totals(db_session):
    assert weekly_paid_service.apply_paid_delta("U", "2025-W03", {"efedrina": 0}, 1) is None
    assert weekly_paid_service.get_aggregate("U", "2025-W03") is None


def test_apply_delta_rejects_bad_sign(db_session):
    with pytest.raises(ValueError):
        weekly_paid_service.apply_paid_delta("U", "2025-W03", {"efedrina": 1}, 2)


def test_list_weekly_totals_newest_first(db_session):
    weekly_paid_service.apply_paid_delta("U", "2025-W02", {"efedrina": 1}, 1)
    weekly_paid_service.apply_paid_delta("U", "2025-W10", {"efedrina": 2}, 1)
    weekly_paid_service.apply_paid_delta("V", "2025-W10", {"efedrina": 3}, 1)
    db_session.commit()

    weeks = weekly_paid_service.list_weekly_totals("U")
    assert [a.iso_week for a in weeks] == ["2025-W10", "2025-W02"]
    assert weeks[0].to_dict()["totals"] == {"efedrina": 2}
    assert weekly_paid_service.get_weekly_totals("nobody", "2025-W10") == {}
