# Overview: Outbound deposit notifications through the chat relay (HTTP POST via httpx).

from __future__ import annotations

from dataclasses import dataclass

import httpx
from flask import current_app

from .deposit_policy import DepositFlags, effective_status


class NotificationDeliveryError(Exception):
    """The relay could not be reached or answered with an error status."""
    pass


@dataclass(frozen=True)
class NotificationOutcome:
    delivered: bool
    skipped: bool = False
    status_code: int | None = None


SKIPPED = NotificationOutcome(delivered=False, skipped=True)


def build_deposit_payload(record, flags: DepositFlags, severity: str) -> dict:
    """Event body ("registro") for a deposit: identity, quantities, full flag set, severity, status."""
    return {
        "id": record.id,
        "deposit_identifier": record.deposit_identifier,
        "folder_number": record.folder_number,
        "created_by_uid": record.created_by_uid,
        "created_by_name": record.created_by_name,
        "product_id": record.product_id,
        "product_name": record.product.name if record.product else None,
        "quantity": record.quantity,
        "efedrina": record.efedrina,
        "po_aluminio": record.po_aluminio,
        "embalagem_plastica": record.embalagem_plastica,
        "folhas_papel": record.folhas_papel,
        "valor_dinheiro": record.valor_dinheiro,
        "note": record.note,
        "meta_paid": flags.meta_paid,
        "manufactured": flags.manufactured,
        "confirmed": flags.confirmed,
        "refused": flags.refused,
        "severity": severity,
        "status": effective_status(flags),
    }


def notify_deposit_event(target_uid: str, payload: dict, *, client: httpx.Client | None = None) -> NotificationOutcome:
    """
    POST {"uid": target_uid, "registro": payload} to NOTIFY_RELAY_URL.

    Skipped (not an error) when no relay is configured. Any transport error
    or non-2xx answer raises NotificationDeliveryError; callers decide
    whether that matters.
    """
    url = current_app.config.get("NOTIFY_RELAY_URL")
    if not url:
        current_app.logger.debug("Notification relay not configured; skipping %s", payload.get("severity"))
        return SKIPPED

    timeout = current_app.config.get("NOTIFY_TIMEOUT_SECONDS", 10)
    body = {"uid": target_uid, "registro": payload}

    owns_client = client is None
    if owns_client:
        client = httpx.Client(timeout=timeout)
    try:
        response = client.post(url, json=body)
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        raise NotificationDeliveryError(
            f"Relay answered {exc.response.status_code} for deposit {payload.get('deposit_identifier')}"
        ) from exc
    except httpx.HTTPError as exc:
        raise NotificationDeliveryError(f"Relay unreachable: {exc}") from exc
    finally:
        if owns_client:
            client.close()

    current_app.logger.info(
        "Notified %s about deposit %s (%s)",
        target_uid,
        payload.get("deposit_identifier"),
        payload.get("severity"),
    )
    return NotificationOutcome(delivered=True, status_code=response.status_code)
