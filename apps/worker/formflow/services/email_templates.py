"""Built-in email templates and their typed data schemas.

Placeholders use the {{ variable_name }} syntax. Each template is bound to a
closed pydantic schema; rendering validates data against it first, so a
template can never be sent with an unreplaced placeholder.
"""

from __future__ import annotations

import html
import re
from dataclasses import dataclass
from typing import Any, Mapping

from pydantic import ValidationError

from formflow.core.errors import TemplateDataError
from formflow.schemas.email import (
    AgentSummaryData,
    BuyerFormRequestData,
    SellerFormRequestData,
    TemplateData,
)

# Shared token extraction pattern: {{ variable_name }} (whitespace allowed)
VARIABLE_PATTERN = re.compile(r"{{\s*([a-zA-Z0-9_]+)\s*}}")

# Variables whose line breaks are kept in the HTML body
LINE_BREAK_VARIABLES = {"summary"}


@dataclass(frozen=True)
class EmailTemplate:
    name: str
    subject: str
    html: str
    schema: type[TemplateData]


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    html: str
    text: str


def extract_template_variables(text: str) -> set[str]:
    if not text:
        return set()
    return {match.group(1) for match in VARIABLE_PATTERN.finditer(text)}


AGENT_SUMMARY_HTML = """<div style="font-family: Arial, sans-serif; max-width: 640px;">
  <h2>New {{ client_type }} form completed</h2>
  <p><strong>{{ client_name }}</strong> ({{ client_email }}) just completed their intake form.</p>
  <h3>AI qualification summary</h3>
  <div style="background: #f8fafc; padding: 12px; border-radius: 6px;">{{ summary }}</div>
  <p><a href="{{ report_url }}">Open the full client report</a></p>
  <h3>Form answers</h3>
  <pre style="white-space: pre-wrap; font-size: 12px;">{{ form_data }}</pre>
</div>"""

BUYER_FORM_REQUEST_HTML = """<div style="font-family: Arial, sans-serif; max-width: 640px;">
  <p>Hi {{ buyer_name }},</p>
  <p>Thanks for reaching out about buying a home. To help me find the right
  properties for you, please take a few minutes to fill out this short questionnaire:</p>
  <p><a href="{{ form_url }}">Start the buyer questionnaire</a></p>
  <p>Once you submit it I'll review your answers and follow up with next steps.</p>
  <p>Best,<br>{{ agent_name }}</p>
</div>"""

SELLER_FORM_REQUEST_HTML = """<div style="font-family: Arial, sans-serif; max-width: 640px;">
  <p>Hi {{ seller_name }},</p>
  <p>Thanks for considering me to help sell your home. Please fill out this short
  questionnaire about your property and goals:</p>
  <p><a href="{{ form_url }}">Start the seller questionnaire</a></p>
  <p>Once you submit it I'll prepare for our listing conversation.</p>
  <p>Best,<br>{{ agent_name }}</p>
</div>"""


TEMPLATES: dict[str, EmailTemplate] = {
    "agent_summary": EmailTemplate(
        name="agent_summary",
        subject="New {{ client_type }} Form Completed - {{ client_name }}",
        html=AGENT_SUMMARY_HTML,
        schema=AgentSummaryData,
    ),
    "buyer_form_request": EmailTemplate(
        name="buyer_form_request",
        subject="Complete Your Buyer Information Form",
        html=BUYER_FORM_REQUEST_HTML,
        schema=BuyerFormRequestData,
    ),
    "seller_form_request": EmailTemplate(
        name="seller_form_request",
        subject="Complete Your Seller Information Form",
        html=SELLER_FORM_REQUEST_HTML,
        schema=SellerFormRequestData,
    ),
}


def undeclared_variables(template: EmailTemplate) -> set[str]:
    """Placeholders used by a template that its schema does not declare."""
    used = extract_template_variables(template.subject) | extract_template_variables(template.html)
    return used - set(template.schema.model_fields)


def validate_registry(templates: Mapping[str, EmailTemplate] = TEMPLATES) -> None:
    for name, template in templates.items():
        missing = undeclared_variables(template)
        if missing:
            raise TemplateDataError(
                f"Template {name} uses undeclared variables: {sorted(missing)}"
            )


def get_template(name: str) -> EmailTemplate:
    try:
        return TEMPLATES[name]
    except KeyError:
        raise TemplateDataError(f"Unknown email template: {name}") from None


def _substitute(text: str, values: dict[str, str]) -> str:
    return VARIABLE_PATTERN.sub(lambda m: values[m.group(1)], text)


def render_template(
    name: str,
    data: TemplateData | Mapping[str, Any],
    subject: str | None = None,
) -> RenderedEmail:
    """
    Validate data against the template's schema and render subject and body.

    Raises TemplateDataError for unknown templates, wrong schema types,
    missing or extra fields.
    """
    template = get_template(name)
    if isinstance(data, TemplateData):
        if not isinstance(data, template.schema):
            raise TemplateDataError(
                f"Template {name} expects {template.schema.__name__}, got {type(data).__name__}"
            )
        model = data
    else:
        try:
            model = template.schema.model_validate(dict(data))
        except ValidationError as exc:
            raise TemplateDataError(f"Invalid data for template {name}: {exc}") from exc

    raw = {key: str(value) for key, value in model.model_dump().items()}
    escaped = {}
    for key, value in raw.items():
        value = html.escape(value)
        if key in LINE_BREAK_VARIABLES:
            value = value.replace("\n", "<br>")
        escaped[key] = value

    text_lines = [f"{key}: {value}" for key, value in raw.items()]
    return RenderedEmail(
        subject=subject or _substitute(template.subject, raw),
        html=_substitute(template.html, escaped),
        text="\n".join(text_lines),
    )


validate_registry()
