"""Event specification primitives.

- `TopicFieldSpec` / `DataFieldSpec`: typed sources for indexed topics / data words
- `EventSpec`: one event rule (topic0, name, fields)
- `EventRegistry`: mapping from topic0 → EventSpec
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class TopicFieldSpec:
    """One indexed topic field (1-based topic index, topic0 is the signature)."""

    name: str
    index: int
    type: str  # e.g., "address", "uint256", "int24"


@dataclass(frozen=True)
class DataFieldSpec:
    """One 32-byte ABI word in the data section (0-based word index)."""

    name: str
    word_index: int
    type: str  # e.g., "address", "uint256", "uint128"


@dataclass(frozen=True)
class EventSpec:
    topic0: str
    name: str
    signature: str
    topic_fields: tuple[TopicFieldSpec, ...]
    data_fields: tuple[DataFieldSpec, ...]

    @property
    def field_names(self) -> tuple[str, ...]:
        return tuple(f.name for f in self.topic_fields) + tuple(f.name for f in self.data_fields)


# Keyed by lowercased 0x-hex topic0.
EventRegistry = dict[str, EventSpec]


def registry_topic0s(registry: EventRegistry) -> list[str]:
    return [spec.topic0 for spec in registry.values()]
