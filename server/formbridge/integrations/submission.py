"""
Form submission as seen by integrations.

Integrations only read field values; the only writes they make are
validation errors and front-end JS events attached to the submission.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class FormField:
    """A field on the submitted form."""
    id: str
    handle: str
    name: Optional[str] = None
    type: str = "text"


@dataclass
class Submission:
    """A single form fill being processed."""
    id: str
    form_handle: str
    fields: List[FormField] = field(default_factory=list)
    values: Dict[str, Any] = field(default_factory=dict)
    errors: Dict[str, List[str]] = field(default_factory=dict)
    front_end_js_events: List[Dict[str, Any]] = field(default_factory=list)

    def get_field(self, handle: str) -> Optional[FormField]:
        for form_field in self.fields:
            if form_field.handle == handle:
                return form_field
        return None

    def get_field_value(self, path: str) -> Any:
        """
        Return the value stored for ``path``.

        Dotted paths read into structured values, so ``address.city`` returns
        the ``city`` key of the ``address`` field.
        """
        handle, _, remainder = path.partition(".")
        value = self.values.get(handle)

        for key in filter(None, remainder.split(".")):
            if not isinstance(value, dict):
                return None
            value = value.get(key)

        return value

    def add_error(self, handle: str, message: str) -> None:
        self.errors.setdefault(handle, []).append(message)

    def has_errors(self) -> bool:
        return any(self.errors.values())

    def add_front_end_js_event(self, event: Dict[str, Any]) -> None:
        self.front_end_js_events.append(event)
