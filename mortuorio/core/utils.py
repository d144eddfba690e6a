from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal, InvalidOperation

from mortuorio.core.errors import InvalidValue, MissingField


def money(value: Decimal | float | int) -> str:
    return f"S/ {Decimal(value):,.2f}"


def required(payload: dict[str, str], key: str, label: str | None = None) -> str:
    value = (payload.get(key) or "").strip()
    if not value:
        raise MissingField(f"Falta el campo obligatorio: {label or key}")
    return value


def parse_decimal(raw: str | int | Decimal | None, label: str = "monto") -> Decimal:
    if raw is None or str(raw).strip() == "":
        raise MissingField(f"Falta el campo obligatorio: {label}")
    try:
        value = Decimal(str(raw).strip().replace(",", "."))
    except InvalidOperation as exc:
        raise InvalidValue(f"Valor numerico invalido para {label}: {raw}") from exc
    if not value.is_finite():
        raise InvalidValue(f"Valor numerico invalido para {label}: {raw}")
    return value.quantize(Decimal("0.01"))


def parse_int(raw: str | int | None, label: str) -> int:
    if raw is None or str(raw).strip() == "":
        raise MissingField(f"Falta el campo obligatorio: {label}")
    try:
        return int(str(raw).strip())
    except ValueError as exc:
        raise InvalidValue(f"Valor entero invalido para {label}: {raw}") from exc


def parse_datetime(raw: str | datetime | None, label: str) -> datetime:
    if isinstance(raw, datetime):
        return raw
    if raw is None or not str(raw).strip():
        raise MissingField(f"Falta el campo obligatorio: {label}")
    try:
        return datetime.fromisoformat(str(raw).strip())
    except ValueError as exc:
        raise InvalidValue(f"Fecha y hora invalida para {label}: {raw}") from exc


def parse_date(raw: str | date | None, label: str) -> date | None:
    if isinstance(raw, date):
        return raw
    if raw is None or not str(raw).strip():
        return None
    try:
        return date.fromisoformat(str(raw).strip())
    except ValueError as exc:
        raise InvalidValue(f"Fecha invalida para {label}: {raw}") from exc


def parse_bool(raw: str | bool | None) -> bool:
    if isinstance(raw, bool):
        return raw
    return (raw or "").strip().lower() in {"1", "true", "si", "yes", "on"}
