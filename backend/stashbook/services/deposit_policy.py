# Overview: Pure deposit approval policy; status precedence and per-toggle side effects.

"""
Deposit Approval Policy

No database access here. deposit_service feeds the previous flags, the flag
being toggled and its new value; this module answers what must happen.

EFFECTIVE STATUS (first match wins):
    refused > confirmed > manufactured > meta_paid > pending

NOTIFICATION TABLE:
    refused      -> true   always notify, severity "refused"
    confirmed    -> true   notify, "shipped" if manufactured else "approved"
    manufactured -> true   notify "shipped" only when already confirmed
    meta_paid    -> any    never
    any flag     -> false  never
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional


FLAG_META_PAID = "meta_paid"
FLAG_MANUFACTURED = "manufactured"
FLAG_CONFIRMED = "confirmed"
FLAG_REFUSED = "refused"

FLAGS = (FLAG_META_PAID, FLAG_MANUFACTURED, FLAG_CONFIRMED, FLAG_REFUSED)

# Column that stores each flag on DepositRecord
FLAG_COLUMNS = {
    FLAG_META_PAID: "meta_paid",
    FLAG_MANUFACTURED: "manufactured",
    FLAG_CONFIRMED: "confirmed_flag",
    FLAG_REFUSED: "refused",
}

STATUS_PENDING = "pending"
STATUS_META_PAID = "meta_paid"
STATUS_MANUFACTURED = "manufactured"
STATUS_CONFIRMED = "confirmed"
STATUS_REFUSED = "refused"

SEVERITY_REFUSED = "refused"
SEVERITY_SHIPPED = "shipped"
SEVERITY_APPROVED = "approved"
SEVERITY_SUBMITTED = "submitted"


@dataclass(frozen=True)
class DepositFlags:
    meta_paid: bool = False
    manufactured: bool = False
    confirmed: bool = False
    refused: bool = False

    def with_flag(self, flag: str, value: bool) -> "DepositFlags":
        if flag not in FLAGS:
            raise ValueError(f"Unknown flag: {flag}")
        return replace(self, **{flag: bool(value)})

    def to_dict(self) -> dict:
        return {
            "meta_paid": self.meta_paid,
            "manufactured": self.manufactured,
            "confirmed": self.confirmed,
            "refused": self.refused,
        }


@dataclass(frozen=True)
class NotificationDecision:
    send: bool
    severity: Optional[str] = None


@dataclass(frozen=True)
class TransitionPlan:
    """
    What a single toggle must do.

    ledger_effect: append the deposit IN movement (guarded by idempotency key,
                   so at most one per record ever)
    aggregate_sign: +1 credit / -1 debit the weekly paid aggregate / 0 nothing
    notification: relay decision for the new state
    """
    previous: DepositFlags
    next: DepositFlags
    flag: str
    value: bool
    ledger_effect: bool
    aggregate_sign: int
    notification: NotificationDecision

    @property
    def changed(self) -> bool:
        return self.previous != self.next


NO_NOTIFICATION = NotificationDecision(send=False)


def flags_of(record) -> DepositFlags:
    """
    Current flags of a DepositRecord-like object.

    The legacy `confirmed` column counts as confirmed too, so records written
    before the multi-flag workflow keep their meaning.
    """
    return DepositFlags(
        meta_paid=bool(record.meta_paid),
        manufactured=bool(record.manufactured),
        confirmed=bool(record.confirmed_flag or record.confirmed),
        refused=bool(record.refused),
    )


def effective_status(flags: DepositFlags) -> str:
    if flags.refused:
        return STATUS_REFUSED
    if flags.confirmed:
        return STATUS_CONFIRMED
    if flags.manufactured:
        return STATUS_MANUFACTURED
    if flags.meta_paid:
        return STATUS_META_PAID
    return STATUS_PENDING


def decide_notification(
    previous: DepositFlags,
    next: DepositFlags,
    flag: str,
    value: bool,
) -> NotificationDecision:
    if flag not in FLAGS:
        raise ValueError(f"Unknown flag: {flag}")

    # Un-setting a flag never notifies
    if not value:
        return NO_NOTIFICATION

    if flag == FLAG_REFUSED:
        return NotificationDecision(send=True, severity=SEVERITY_REFUSED)

    if flag == FLAG_CONFIRMED:
        if next.manufactured:
            return NotificationDecision(send=True, severity=SEVERITY_SHIPPED)
        return NotificationDecision(send=True, severity=SEVERITY_APPROVED)

    if flag == FLAG_MANUFACTURED:
        if next.confirmed:
            return NotificationDecision(send=True, severity=SEVERITY_SHIPPED)
        return NO_NOTIFICATION

    # meta_paid
    return NO_NOTIFICATION


def plan_transition(
    previous: DepositFlags,
    flag: str,
    value: bool,
    *,
    has_quantity: bool,
) -> TransitionPlan:
    """
    Side effects of setting `flag` to `value` on a record with `previous` flags.

    Re-setting a flag to its current value plans nothing (no ledger, no
    aggregate, no notification).
    """
    value = bool(value)
    next = previous.with_flag(flag, value)
    was = getattr(previous, flag)

    if was == value:
        return TransitionPlan(
            previous=previous,
            next=next,
            flag=flag,
            value=value,
            ledger_effect=False,
            aggregate_sign=0,
            notification=NO_NOTIFICATION,
        )

    # Stock enters once the deposit is confirmed and not refused, whichever
    # of the two toggles gets it there
    ledger_effect = (
        has_quantity
        and next.confirmed
        and not next.refused
        and ((flag == FLAG_CONFIRMED and value) or (flag == FLAG_REFUSED and not value))
    )

    aggregate_sign = 0
    if flag == FLAG_META_PAID:
        aggregate_sign = 1 if value else -1

    return TransitionPlan(
        previous=previous,
        next=next,
        flag=flag,
        value=value,
        ledger_effect=ledger_effect,
        aggregate_sign=aggregate_sign,
        notification=decide_notification(previous, next, flag, value),
    )
