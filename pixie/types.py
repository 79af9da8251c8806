"""
Shared value types.

Kept free of pixie imports so every layer (runtime, ledger, channels) can use
them without import cycles.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ModelCatalogEntry:
    """One billable model as reported by the runtime at startup."""

    id: str
    display_name: str
    billing_multiplier: float = 1.0

    @property
    def label(self) -> str:
        """Button label shown to the operator when choosing a model."""
        return f"{self.display_name} (×{self.billing_multiplier:g})"


@dataclass(frozen=True)
class ChoiceSpec:
    """A single option presented to the operator (label shown, value returned)."""

    label: str
    value: str
