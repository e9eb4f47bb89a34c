"""
Generic request/response shapes shared by clients and the service manager.
"""

from dataclasses import dataclass, field
from typing import Any

from pydantic_core import from_json


@dataclass
class APIRequest:
    """Provider-agnostic upstream request."""

    method: str = "GET"
    path: str = "/"
    headers: dict[str, str] = field(default_factory=dict)
    params: dict[str, Any] = field(default_factory=dict)
    body: Any = None
    timeout: float | None = None  # seconds


@dataclass
class APIResponse:
    """Provider-agnostic upstream response."""

    status_code: int
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    duration: float = 0.0  # seconds

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        """Decode the body as JSON."""
        return from_json(self.body)
