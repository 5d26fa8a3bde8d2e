import csv
import re
from datetime import datetime
from decimal import Decimal, InvalidOperation
from io import StringIO
from typing import Sequence

from reports import Movement


_THOUSANDS_DOT = re.compile(r"^-?\d{1,3}(\.\d{3})+$")
_THOUSANDS_COMMA = re.compile(r"^-?\d{1,3}(,\d{3})+$")

MOVEMENT_KIND_LABELS = {"income": "Ingreso", "expense": "Egreso"}
MOVEMENT_STATUS_LABELS = {"paid": "Pagado", "pending": "Pendiente"}


def sanitize_csv_value(value: str) -> str:
    """
    Sanitize CSV values to prevent formula injection by prefixing dangerous patterns with tab.
    """
    if not value or value.strip() == "":
        return ""

    value = value.strip()

    formula_triggers = ("=", "+", "-", "@", "\t", "\r")

    if value.startswith(formula_triggers):
        return "\t" + value

    dangerous_patterns = [
        r"^cmd\s*",
        r"^powershell\s*",
        r"^http[s]?://",
    ]

    for pattern in dangerous_patterns:
        if re.match(pattern, value, re.IGNORECASE):
            return "\t" + value

    return value


def parse_date(value: str):
    value = value.strip()
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        return datetime.strptime(value, "%d/%m/%Y").date()


def parse_amount(value: str, *, allow_negative: bool = False) -> int:
    """Parse a typed amount into cents.

    Accepts ``150000``, ``150.000``, ``1.500,50`` and ``1,500.50``. A lone
    separator followed by three-digit groups is read as a thousands mark.
    """
    clean = value.strip().replace("$", "").replace(" ", "")
    if "," in clean and "." in clean:
        if clean.rfind(",") > clean.rfind("."):
            clean = clean.replace(".", "").replace(",", ".")
        else:
            clean = clean.replace(",", "")
    elif "," in clean:
        if _THOUSANDS_COMMA.match(clean):
            clean = clean.replace(",", "")
        else:
            clean = clean.replace(",", ".")
    elif _THOUSANDS_DOT.match(clean):
        clean = clean.replace(".", "")
    if not clean:
        raise ValueError("Invalid amount")
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    if not amount.is_finite():
        raise ValueError("Invalid amount")
    try:
        cents = int((amount * 100).quantize(Decimal("1")))
    except InvalidOperation as exc:
        raise ValueError("Amount is too large") from exc
    if cents < 0 and not allow_negative:
        raise ValueError("Amount must be positive")
    return cents


def export_movements(movements: Sequence[Movement]) -> str:
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(["Fecha", "Tipo", "Estado", "Cliente", "Descripcion", "Monto"])
    for item in movements:
        writer.writerow(
            [
                item.date.isoformat(),
                MOVEMENT_KIND_LABELS.get(item.kind, item.kind),
                MOVEMENT_STATUS_LABELS.get(item.status, item.status),
                sanitize_csv_value(item.client_name or ""),
                sanitize_csv_value(item.description),
                f"{item.amount_cents / 100:.2f}",
            ]
        )
    return output.getvalue()
