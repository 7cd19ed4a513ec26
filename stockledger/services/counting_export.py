# stockledger/services/counting_export.py
from __future__ import annotations

import csv
from decimal import Decimal
from io import BytesIO, StringIO
from typing import Any, List

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter

from stockledger.models.counting import CountingItem, CountingSession
from stockledger.services.counting import summarize

HEADERS = [
    "Barcode",
    "SKU",
    "Product",
    "Unit",
    "System Qty",
    "Counted Qty",
    "Difference",
    "Cost Price",
    "Value Difference",
    "Status",
    "Warehouse",
]


def item_status(item: CountingItem) -> str:
    diff = item.difference or 0
    if diff == 0:
        return "matched"
    return "over" if diff > 0 else "short"


def report_rows(sess: CountingSession) -> List[List[Any]]:
    """Item rows, a blank separator, then the summary block."""
    rows: List[List[Any]] = []
    for item in sess.items:
        rows.append([
            item.barcode or "",
            item.sku or "",
            item.name,
            item.unit_of_measure or "",
            item.system_quantity,
            item.counted_quantity,
            item.difference,
            item.cost_price,
            item.value_difference,
            item_status(item),
            sess.warehouse_id,
        ])

    s = summarize(sess.items)
    rows.append([])
    rows.append(["Summary"])
    rows.append(["Session", sess.session_name])
    rows.append(["Warehouse", sess.warehouse_id])
    rows.append(["Status", sess.status.value])
    rows.append(["Total items", s.total_items])
    rows.append(["Matched", s.matched_items])
    rows.append(["Unmatched", s.unmatched_items])
    rows.append(["Total value difference", s.total_value_difference])
    return rows


def export_csv(sess: CountingSession) -> bytes:
    buf = StringIO()
    writer = csv.writer(buf)
    writer.writerow(HEADERS)
    writer.writerows(report_rows(sess))
    # BOM so spreadsheet apps pick UTF-8 (Thai product names)
    return buf.getvalue().encode("utf-8-sig")


def export_xlsx(sess: CountingSession) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = "Stock count"

    ws.append(HEADERS)
    for cell in ws[1]:
        cell.font = Font(bold=True)

    for r in report_rows(sess):
        ws.append([float(v) if isinstance(v, Decimal) else v for v in r])

    # autosize columns
    for i, h in enumerate(HEADERS, start=1):
        col = get_column_letter(i)
        max_len = max(len(str(h)), 10)
        for cell in ws[col]:
            if cell.value is not None:
                max_len = max(max_len, len(str(cell.value)))
        ws.column_dimensions[col].width = min(max_len + 2, 55)

    bio = BytesIO()
    wb.save(bio)
    return bio.getvalue()


def export_filename(sess: CountingSession, fmt: str) -> str:
    stamp = (sess.completed_at or sess.created_at).strftime("%Y%m%d")
    return f"stock-count-{sess.warehouse_id}-{sess.id}-{stamp}.{fmt}"
