from dataclasses import dataclass
from typing import List


@dataclass
class DomainError(Exception):
    detail: str
    title: str = "Domain Error"
    type: str = "https://example.com/problems/domain-error"
    errors: List[dict] | None = None


@dataclass
class NotFoundError(DomainError):
    title: str = "Not Found"
    type: str = "https://example.com/problems/not-found"


@dataclass
class PaymentProviderError(Exception):
    """Stripe failure mapped to a message that is safe to show a customer."""

    kind: str
    message: str

    @property
    def status_code(self) -> int:
        return {
            "configuration": 500,
            "invalid_request": 400,
            "unavailable": 503,
        }.get(self.kind, 502)
