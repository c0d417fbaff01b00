import csv
import io
from typing import Iterable, Any, Sequence, Callable, Optional
from fastapi.responses import StreamingResponse

def decode_csv_bytes(data: bytes) -> str:
    # spreadsheet exports: UTF-8 with BOM, plain UTF-8, then Windows Latin-1
    for enc in ("utf-8-sig", "utf-8", "cp1252"):
        try:
            return data.decode(enc)
        except UnicodeDecodeError:
            continue
    return data.decode("utf-8", errors="replace")


def normalize_header(h: str) -> str:
    h = (h or "").strip()
    mapping = {
        "first_name": "first_name",
        "firstname": "first_name",
        "first name": "first_name",
        "prénom": "first_name",
        "prenom": "first_name",
        "last_name": "last_name",
        "lastname": "last_name",
        "last name": "last_name",
        "nom": "last_name",
        "email": "email",
        "e-mail": "email",
        "mail": "email",
        "dept": "dept",
        "department": "dept",
        "service": "dept",
        "département": "dept",
    }
    return mapping.get(h.lower(), h)


def _iso(value: Any) -> str:
    if value is None:
        return ""
    return value.isoformat() if hasattr(value, "isoformat") else str(value)


def _describe_lines(loan: Any) -> str:
    parts = []
    for line in getattr(loan, "lines", []) or []:
        item = getattr(line, "asset_item", None)
        stock = getattr(line, "stock_item", None)
        if item is not None:
            parts.append(item.asset_tag or item.serial or item.id)
        elif stock is not None:
            model = stock.asset_model
            name = f"{model.brand} {model.model_name}" if model else stock.id
            parts.append(f"{name} x{line.quantity}")
    return "; ".join(parts)


LOAN_COLUMNS: Sequence[tuple[str, Callable[[Any], str]]] = [
    ("id", lambda l: str(l.id)),
    ("employee", lambda l: f"{l.employee.first_name} {l.employee.last_name}" if l.employee else ""),
    ("status", lambda l: str(l.status)),
    ("opened_at", lambda l: _iso(l.opened_at)),
    ("closed_at", lambda l: _iso(l.closed_at)),
    ("pickup_signed_at", lambda l: _iso(l.pickup_signed_at)),
    ("return_signed_at", lambda l: _iso(l.return_signed_at)),
    ("line_count", lambda l: str(len(l.lines))),
    ("items", _describe_lines),
]


def rows_to_csv_response(
    rows: Iterable[Any],
    *,
    filename: str,
    columns: Optional[Sequence[tuple[str, Callable[[Any], str]]]] = None,
) -> StreamingResponse:
    """
    Stream `rows` as a CSV download. Each column is (header, getter); rows may
    be ORM objects or pydantic models, anything with attribute access.
    """
    if columns is None:
        columns = LOAN_COLUMNS

    def generate():
        buf = io.StringIO()
        w = csv.writer(buf)

        w.writerow([h for h, _ in columns])
        yield buf.getvalue()
        buf.seek(0)
        buf.truncate(0)

        for r in rows:
            w.writerow([getter(r) for _, getter in columns])
            yield buf.getvalue()
            buf.seek(0)
            buf.truncate(0)

    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
    return StreamingResponse(generate(), media_type="text/csv; charset=utf-8", headers=headers)

def csv_bytes_to_rows(data: bytes) -> tuple[list[dict[str, str]], str | None]:
    """
    Parse CSV bytes into rows keyed by normalized header.
    Returns (rows, None) on success, ([], message) when there is no header.
    """
    text = decode_csv_bytes(data)
    reader = csv.DictReader(io.StringIO(text))
    if not reader.fieldnames:
        return [], "CSV header not found"

    field_map = {fn: normalize_header(fn) for fn in reader.fieldnames}

    rows: list[dict[str, str]] = []
    for raw in reader:
        row: dict[str, str] = {}
        for k, v in raw.items():
            nk = field_map.get(k, k)
            row[nk] = v if v is not None else ""
        rows.append(row)

    return rows, None
