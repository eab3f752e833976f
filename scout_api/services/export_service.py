from __future__ import annotations

import json
from collections.abc import Sequence
from datetime import datetime, timezone
from io import BytesIO

import pandas as pd
from reportlab.lib.pagesizes import letter
from reportlab.pdfgen import canvas

from scout_api.db.schemas import KPISummary, MetricBucket, Transaction

CSV_MEDIA_TYPE = "text/csv"
JSON_MEDIA_TYPE = "application/json"
TXT_MEDIA_TYPE = "text/plain"
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
PDF_MEDIA_TYPE = "application/pdf"

TRANSACTION_COLUMNS = [
    "id",
    "created_at",
    "total_amount",
    "store_id",
    "store_location",
    "region",
    "customer_age",
    "customer_gender",
    "payment_method",
    "brand",
    "category",
]


def transactions_frame(transactions: Sequence[Transaction]) -> pd.DataFrame:
    rows = [t.model_dump(include=set(TRANSACTION_COLUMNS)) for t in transactions]
    return pd.DataFrame(rows, columns=TRANSACTION_COLUMNS)


def transactions_csv(transactions: Sequence[Transaction]) -> bytes:
    return transactions_frame(transactions).to_csv(index=False).encode("utf-8")


def transactions_json(transactions: Sequence[Transaction]) -> bytes:
    payload = [t.model_dump(mode="json") for t in transactions]
    return json.dumps(payload, ensure_ascii=False, indent=2).encode("utf-8")


def metrics_excel(sheets: dict[str, Sequence[MetricBucket]]) -> bytes:
    buf = BytesIO()
    with pd.ExcelWriter(buf, engine="openpyxl") as writer:
        for name, buckets in sheets.items():
            df = pd.DataFrame([b.model_dump() for b in buckets], columns=["key", "count", "amount"])
            df.to_excel(writer, index=False, sheet_name=name[:31])
    return buf.getvalue()


def summary_pdf(title: str, kpis: KPISummary, top_regions: Sequence[MetricBucket], currency: str = "PHP ") -> bytes:
    buf = BytesIO()
    p = canvas.Canvas(buf, pagesize=letter)
    p.setFont("Helvetica-Bold", 14)
    p.drawString(50, 760, title)
    p.setFont("Helvetica", 11)
    p.drawString(50, 740, f"Generated: {datetime.now(timezone.utc):%Y-%m-%d %H:%M} UTC")
    p.drawString(50, 712, f"Transactions: {kpis.total_transactions:,}")
    p.drawString(50, 694, f"Total Revenue: {currency}{kpis.total_revenue:,.2f}")
    p.drawString(50, 676, f"Average Transaction: {currency}{kpis.average_transaction_value:,.2f}")
    p.drawString(50, 658, f"Unique Customers: {kpis.unique_customers:,}")
    p.drawString(50, 640, f"Average Basket Size: {kpis.avg_basket_size}")
    y = 610
    if top_regions:
        p.setFont("Helvetica-Bold", 12)
        p.drawString(50, y, "Top Regions")
        p.setFont("Helvetica", 11)
        for b in top_regions[:10]:
            y -= 18
            p.drawString(60, y, f"{b.key}: {b.count:,} transactions, {currency}{b.amount:,.2f}")
    p.save()
    return buf.getvalue()


def transcript_export(turns: Sequence[dict], fmt: str) -> tuple[bytes, str]:
    """Render a chat transcript as json, txt or csv; returns (body, media type)."""
    if fmt == "json":
        return json.dumps(list(turns), ensure_ascii=False, indent=2, default=str).encode("utf-8"), JSON_MEDIA_TYPE
    if fmt == "txt":
        lines = [f"[{t['timestamp']}] {t['role'].upper()}: {t['content']}" for t in turns]
        return "\n\n".join(lines).encode("utf-8"), TXT_MEDIA_TYPE
    if fmt == "csv":
        df = pd.DataFrame(list(turns), columns=["timestamp", "role", "content"])
        return df.to_csv(index=False).encode("utf-8"), CSV_MEDIA_TYPE
    raise ValueError(f"Unsupported export format: {fmt}")
