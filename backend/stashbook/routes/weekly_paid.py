# backend/stashbook/routes/weekly_paid.py
"""
Weekly paid totals (read only).

Members read their own totals; role level 2 or lower reads anyone's.
"""
from flask import Blueprint, g, jsonify, request

from ..decorators import require_actor
from ..services import weekly_paid_service
from stashbook.time_utils import utcnow

weekly_paid_bp = Blueprint("weekly_paid", __name__, url_prefix="/api/weekly-paid")


@weekly_paid_bp.get("/<user_uid>")
@require_actor
def get_weekly_paid(user_uid: str):
    """
    Query params:
    - week: "<year>-W<ww>" (optional). "current" means this ISO week.
      Without it every recorded week is listed, newest first.
    """
    if g.actor.role_level > 2 and g.actor.uid != user_uid:
        return jsonify({"error": "Permission denied"}), 403

    week = request.args.get("week")
    if week:
        if week == "current":
            week = weekly_paid_service.iso_week_key(utcnow())
        return jsonify({
            "id": weekly_paid_service.aggregate_key(user_uid, week),
            "user_uid": user_uid,
            "iso_week": week,
            "totals": weekly_paid_service.get_weekly_totals(user_uid, week),
        })

    aggregates = weekly_paid_service.list_weekly_totals(user_uid)
    return jsonify({"items": [a.to_dict() for a in aggregates], "count": len(aggregates)})
