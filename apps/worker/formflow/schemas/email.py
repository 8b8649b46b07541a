"""Closed data schemas for each email template.

Every {{placeholder}} in a template must be a field of its schema; a missing
field is a validation error instead of an unreplaced token in a sent message.
"""

from pydantic import BaseModel, ConfigDict, Field


class TemplateData(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class AgentSummaryData(TemplateData):
    client_type: str = Field(..., min_length=1)
    client_name: str = Field(..., min_length=1)
    client_email: str = Field(..., min_length=1)
    summary: str
    form_data: str
    report_url: str = Field(..., min_length=1)


class BuyerFormRequestData(TemplateData):
    buyer_name: str = Field(..., min_length=1)
    form_url: str = Field(..., min_length=1)
    agent_name: str = Field(..., min_length=1)


class SellerFormRequestData(TemplateData):
    seller_name: str = Field(..., min_length=1)
    form_url: str = Field(..., min_length=1)
    agent_name: str = Field(..., min_length=1)
