"""
Client report generation.

A report collects a client's form answers and qualification summary into one
shareable document. Two generators are available:
- HttpReportGenerator: delegates to an external report service that returns a URL
- LocalPdfReportGenerator: renders a PDF with reportlab into REPORT_OUTPUT_DIR
"""

from __future__ import annotations

import io
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol
from xml.sax.saxutils import escape

import anyio
import httpx
from reportlab.lib import colors
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from formflow.core.config import settings
from formflow.core.errors import ArtifactFailure
from formflow.services.http_service import request_with_retries
from formflow.services.qualification_service import answer_to_text, clean_answer_key

logger = logging.getLogger(__name__)

REPORT_TIMEOUT_SECONDS = 30.0
_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9_.-]+")


@dataclass
class ReportClient:
    client_type: str
    name: str
    email: str
    phone: str | None = None
    client_id: str | None = None


class ArtifactGenerator(Protocol):
    async def create_report(
        self, client: ReportClient, form_data: dict[str, Any], summary: str
    ) -> str: ...


def answer_rows(form_data: dict[str, Any]) -> list[tuple[str, str]]:
    """(question, answer) pairs for answers that carry a value."""
    rows = []
    for key, value in form_data.items():
        if isinstance(value, dict) and value.get("answer"):
            label = value.get("text") or clean_answer_key(str(key))
            rows.append((str(label), answer_to_text(value["answer"])))
    return rows


class HttpReportGenerator:
    """Generator backed by an external report service."""

    def __init__(
        self,
        url: str,
        token: str = "",
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url
        self.token = token
        self._transport = transport

    async def create_report(
        self, client: ReportClient, form_data: dict[str, Any], summary: str
    ) -> str:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        payload = {
            "title": f"{client.client_type.title()} Qualification - {client.name}",
            "client": {
                "type": client.client_type,
                "name": client.name,
                "email": client.email,
                "phone": client.phone,
            },
            "answers": [{"question": q, "answer": a} for q, a in answer_rows(form_data)],
            "summary": summary,
        }
        try:
            async with httpx.AsyncClient(
                timeout=REPORT_TIMEOUT_SECONDS, transport=self._transport
            ) as http:
                response = await request_with_retries(
                    lambda: http.post(self.url, headers=headers, json=payload)
                )
        except httpx.RequestError as exc:
            raise ArtifactFailure(f"Report service unreachable ({type(exc).__name__})") from exc

        if response.status_code >= 400:
            raise ArtifactFailure(f"Report service returned {response.status_code}")
        try:
            url = response.json().get("url")
        except ValueError as exc:
            raise ArtifactFailure("Report service returned invalid JSON") from exc
        if not url:
            raise ArtifactFailure("Report service response has no url")
        return str(url)


def create_client_report_pdf(
    client: ReportClient,
    form_data: dict[str, Any],
    summary: str,
    generated_at: datetime | None = None,
) -> bytes:
    """Render the client report as PDF bytes."""
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=letter,
        rightMargin=50,
        leftMargin=50,
        topMargin=50,
        bottomMargin=50,
    )

    styles = getSampleStyleSheet()
    title_style = ParagraphStyle(
        "ReportTitle",
        parent=styles["Heading1"],
        fontSize=20,
        spaceAfter=12,
        textColor=colors.HexColor("#1e293b"),
    )
    heading_style = ParagraphStyle(
        "ReportHeading",
        parent=styles["Heading2"],
        fontSize=14,
        spaceAfter=8,
        spaceBefore=14,
        textColor=colors.HexColor("#334155"),
    )
    subheading_style = ParagraphStyle(
        "ReportSubHeading",
        parent=styles["Normal"],
        fontSize=10,
        textColor=colors.HexColor("#64748b"),
        spaceAfter=10,
    )
    normal_style = styles["Normal"]

    elements = []
    elements.append(
        Paragraph(
            f"{client.client_type.title()} Qualification Report: {escape(client.name)}",
            title_style,
        )
    )
    stamp = (generated_at or datetime.now(timezone.utc)).strftime("%B %d, %Y at %H:%M UTC")
    contact = " | ".join(escape(part) for part in (client.email, client.phone) if part)
    elements.append(Paragraph(f"{contact} | Generated: {stamp}", subheading_style))
    elements.append(Spacer(1, 10))

    elements.append(Paragraph("Qualification Summary", heading_style))
    for block in (summary or "No summary available.").split("\n\n"):
        elements.append(Paragraph(escape(block).replace("\n", "<br/>"), normal_style))
        elements.append(Spacer(1, 6))

    rows = answer_rows(form_data)
    if rows:
        elements.append(Paragraph("Form Answers", heading_style))
        table_data = [["Question", "Answer"]]
        table_data.extend(
            [Paragraph(escape(q), normal_style), Paragraph(escape(a), normal_style)]
            for q, a in rows
        )
        answers_table = Table(table_data, colWidths=[2.4 * inch, 4.6 * inch], repeatRows=1)
        answers_table.setStyle(
            TableStyle(
                [
                    ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#334155")),
                    ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
                    ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                    ("VALIGN", (0, 0), (-1, -1), "TOP"),
                    ("BOX", (0, 0), (-1, -1), 1, colors.HexColor("#e2e8f0")),
                    ("INNERGRID", (0, 0), (-1, -1), 0.5, colors.HexColor("#e2e8f0")),
                    ("TOPPADDING", (0, 0), (-1, -1), 6),
                    ("BOTTOMPADDING", (0, 0), (-1, -1), 6),
                ]
            )
        )
        elements.append(answers_table)

    doc.build(elements)
    return buffer.getvalue()


class LocalPdfReportGenerator:
    """Writes PDF reports to a local directory and returns file:// URLs."""

    def __init__(self, output_dir: str | Path) -> None:
        self.output_dir = Path(output_dir)

    def _report_path(self, client: ReportClient) -> Path:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
        name = _UNSAFE_FILENAME_CHARS.sub("_", f"{client.client_type}_{client.email}")
        return self.output_dir / f"{name}_{stamp}.pdf"

    def _write(self, client: ReportClient, form_data: dict[str, Any], summary: str) -> str:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self._report_path(client)
        path.write_bytes(create_client_report_pdf(client, form_data, summary))
        return path.resolve().as_uri()

    async def create_report(
        self, client: ReportClient, form_data: dict[str, Any], summary: str
    ) -> str:
        try:
            url = await anyio.to_thread.run_sync(
                self._write, client, form_data, summary, abandon_on_cancel=True
            )
        except OSError as exc:
            raise ArtifactFailure(f"Could not write report: {exc}") from exc
        logger.info("Report written to %s", url)
        return url


def build_report_generator() -> ArtifactGenerator:
    if settings.REPORT_SERVICE_URL:
        return HttpReportGenerator(settings.REPORT_SERVICE_URL, settings.REPORT_SERVICE_TOKEN)
    return LocalPdfReportGenerator(settings.REPORT_OUTPUT_DIR)
