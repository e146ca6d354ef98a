"""Per-provider parameter policy, keyed by a prefix match on the model id."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class ProviderPolicy:
    family: str
    prefix: str
    header: Optional[str] = None  # value for X-Model-Provider
    temperature_ceiling: Optional[float] = None
    forward_max_tokens: bool = True

    def matches(self, model: str) -> bool:
        return bool(self.prefix) and model.startswith(self.prefix)

    def temperature(self, value: Optional[float]) -> Optional[float]:
        if value is None or self.temperature_ceiling is None:
            return value
        return min(value, self.temperature_ceiling)

    def max_tokens(self, value: Optional[int]) -> Optional[int]:
        return value if self.forward_max_tokens else None


MISTRAL = ProviderPolicy(
    "mistral", "mistralai/", header="mistral", temperature_ceiling=1.0, forward_max_tokens=False
)
GOOGLE = ProviderPolicy("google", "google/", header="google", temperature_ceiling=1.0)
DEFAULT = ProviderPolicy("default", "")

_POLICIES = (MISTRAL, GOOGLE)


def policy_for_model(model: str) -> ProviderPolicy:
    for policy in _POLICIES:
        if policy.matches(model):
            return policy
    return DEFAULT
