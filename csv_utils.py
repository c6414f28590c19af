import csv
import re
from io import StringIO
from typing import Sequence

from models import TransactionMixin

REPORT_HEADER = ["Type", "Date", "Category", "Amount", "Note"]


def sanitize_csv_value(value: str) -> str:
    """Prefix values that a spreadsheet would evaluate with a tab."""
    if not value or value.strip() == "":
        return ""

    value = value.strip()

    formula_triggers = ("=", "+", "-", "@", "\t", "\r")

    if value.startswith(formula_triggers):
        return "\t" + value

    dangerous_patterns = [
        r"^cmd\s*",
        r"^powershell\s*",
        r"^bash\s*",
        r"^sh\s*",
        r"^\.",
        r"^http[s]?://",
    ]

    for pattern in dangerous_patterns:
        if re.match(pattern, value, re.IGNORECASE):
            return "\t" + value

    return value


def _write_rows(writer, label: str, records: Sequence[TransactionMixin]) -> None:
    for record in records:
        writer.writerow(
            [
                label,
                record.date.isoformat(),
                sanitize_csv_value(record.category or ""),
                f"{record.amount:.2f}",
                sanitize_csv_value(record.note or ""),
            ]
        )


def export_transactions(
    incomes: Sequence[TransactionMixin], expenses: Sequence[TransactionMixin]
) -> str:
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(REPORT_HEADER)
    _write_rows(writer, "Income", incomes)
    _write_rows(writer, "Expense", expenses)
    return output.getvalue()
