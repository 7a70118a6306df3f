from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..extensions import db
from ..models import Setting


KEY_GRANULARITY = "installments.granularity"
KEY_TOLERANCE_FLOOR = "installments.tolerance_floor"


class SettingsError(ValueError):
    pass


@dataclass(frozen=True)
class MoneyRules:
    granularity: int
    tolerance_floor: int


def _coerce_positive_int(key: str, raw: str) -> int:
    try:
        value = int(str(raw).strip())
    except (TypeError, ValueError):
        raise SettingsError(f"{key} must be an integer, got {raw!r}")
    if value < 0 or (key == KEY_GRANULARITY and value == 0):
        raise SettingsError(f"{key} out of range: {value}")
    return value


def get_setting(key: str) -> str | None:
    row = db.session.get(Setting, key)
    return row.value if row else None


def set_setting(key: str, value: str | None) -> Setting:
    if key in (KEY_GRANULARITY, KEY_TOLERANCE_FLOOR) and value not in (None, ""):
        _coerce_positive_int(key, value)

    row = db.session.get(Setting, key)
    if row is None:
        row = Setting(key=key, value=value)
        db.session.add(row)
    else:
        row.value = value
    db.session.commit()
    return row


def get_money_rules() -> MoneyRules:
    """
    Rounding granularity and installment tolerance floor.

    Settings rows win over app config so a deployment can change them without
    a restart; read fresh on every call.
    """
    granularity = current_app.config["CURRENCY_GRANULARITY"]
    floor = current_app.config["INSTALLMENT_TOLERANCE_FLOOR"]

    raw = get_setting(KEY_GRANULARITY)
    if raw not in (None, ""):
        granularity = _coerce_positive_int(KEY_GRANULARITY, raw)

    raw = get_setting(KEY_TOLERANCE_FLOOR)
    if raw not in (None, ""):
        floor = _coerce_positive_int(KEY_TOLERANCE_FLOOR, raw)

    return MoneyRules(granularity=int(granularity), tolerance_floor=int(floor))
