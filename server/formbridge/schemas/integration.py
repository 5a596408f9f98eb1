from typing import Any

from pydantic import BaseModel, Field

from formbridge.integrations.base import IntegrationCategory, IntegrationType


class IntegrationSummary(BaseModel):
    handle: str
    type: IntegrationType
    category: IntegrationCategory
    name: str
    enabled: bool
    valid: bool
    errors: dict[str, list[str]] = Field(default_factory=dict)


class IntegrationFieldRead(BaseModel):
    handle: str
    name: str
    required: bool
    type: str


class FormSettingsRead(BaseModel):
    handle: str
    settings: dict[str, list[IntegrationFieldRead]] = Field(default_factory=dict)


class ConnectionResult(BaseModel):
    success: bool


class FormFieldIn(BaseModel):
    id: str
    handle: str
    name: str | None = None
    type: str = "text"


class SubmissionCreate(BaseModel):
    """A form fill to run through an integration."""

    id: str = Field(min_length=1, max_length=64)
    form_handle: str = Field(min_length=1, max_length=120)
    fields: list[FormFieldIn] = Field(default_factory=list)
    values: dict[str, Any] = Field(default_factory=dict)


class SubmissionResult(BaseModel):
    success: bool
    errors: dict[str, list[str]] = Field(default_factory=dict)
    front_end_js_events: list[dict[str, Any]] = Field(default_factory=list)
