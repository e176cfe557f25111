"""
Attribute Bag

Four views of a fused account's attributes: the current values, the values
persisted by the previous pass, the canonical identity's values and the
ordered contributions of every source. Current values are recomputed from the
other three using the configured merge strategies.
"""

import re
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from ..config import AttributeMap, MergeStrategy
from ..errors import ConfigurationError
from .models import AttributeValue, coerce_attribute_value

logger = logging.getLogger(__name__)

_BRACKETED = re.compile(r"\[([^\[\]]*)\]")


def attr_concat(values: Iterable[str]) -> str:
    """Join unique values as ``[a] [b]``, sorted.

    >>> attr_concat(["b@x.org", "a@x.org", "b@x.org"])
    '[a@x.org] [b@x.org]'
    """
    unique = sorted({value for value in values if value})
    return " ".join(f"[{value}]" for value in unique)


def attr_split(value: str) -> List[str]:
    """Inverse of :func:`attr_concat`; plain strings come back as one item."""
    found = _BRACKETED.findall(value)
    if found:
        return [item for item in found if item]
    return [value] if value else []


def _flatten(values: Iterable[AttributeValue]) -> List[str]:
    flat: List[str] = []
    for value in values:
        if isinstance(value, bool):
            items = [str(value).lower()]
        elif isinstance(value, list):
            items = value
        else:
            items = attr_split(value)
        for item in items:
            if item not in flat:
                flat.append(item)
    return flat


def _is_empty(value: Optional[AttributeValue]) -> bool:
    return value is None or value == "" or value == []


@dataclass
class AttributeBag:
    """Attribute views of one fused account."""

    current: Dict[str, AttributeValue] = field(default_factory=dict)
    previous: Dict[str, AttributeValue] = field(default_factory=dict)
    identity: Dict[str, AttributeValue] = field(default_factory=dict)
    sources: Dict[str, List[Dict[str, AttributeValue]]] = field(default_factory=dict)

    @staticmethod
    def coerce(attributes: Dict[str, Any]) -> Dict[str, AttributeValue]:
        coerced = {}
        for name, raw in attributes.items():
            value = coerce_attribute_value(raw)
            if value is not None:
                coerced[name] = value
        return coerced

    def set_identity(self, attributes: Dict[str, Any]) -> None:
        self.identity = self.coerce(attributes)

    def set_previous(self, attributes: Dict[str, Any]) -> None:
        self.previous = self.coerce(attributes)

    def add_source_contribution(self, source: str, attributes: Dict[str, Any]) -> None:
        self.sources.setdefault(source, []).append(self.coerce(attributes))

    def _ordered_sources(self, source_order: Sequence[str]) -> List[str]:
        known = [source for source in source_order if source in self.sources]
        rest = sorted(source for source in self.sources if source not in source_order)
        return known + rest

    def collect(
        self, names: Sequence[str], source_order: Sequence[str], only_source: Optional[str] = None
    ) -> List[AttributeValue]:
        """Non-empty values for any of ``names`` in source precedence order."""
        values = []
        for source in self._ordered_sources(source_order):
            if only_source is not None and source != only_source:
                continue
            for contribution in self.sources[source]:
                for name in names:
                    value = contribution.get(name)
                    if not _is_empty(value):
                        values.append(value)
        return values

    def merge(
        self,
        names: Sequence[str],
        strategy: MergeStrategy,
        source_order: Sequence[str],
        source: Optional[str] = None,
    ) -> Optional[AttributeValue]:
        """Collapse the values contributed for ``names`` into one value.

        Raises:
            ConfigurationError: ``source`` strategy without a source name
        """
        if strategy == MergeStrategy.SOURCE:
            if not source:
                raise ConfigurationError(
                    f"Merge strategy 'source' for {list(names)} needs a source",
                    setting="attribute_maps",
                )
            values = self.collect(names, source_order, only_source=source)
            return values[0] if values else None

        values = self.collect(names, source_order)
        if not values:
            return None
        if strategy == MergeStrategy.FIRST:
            return values[0]
        if strategy == MergeStrategy.LIST:
            return _flatten(values)
        if strategy == MergeStrategy.CONCATENATE:
            return attr_concat(_flatten(values))
        raise ConfigurationError(f"Unknown merge strategy '{strategy}'", setting="attribute_merge")

    def map_attributes(
        self,
        attribute_maps: Sequence[AttributeMap],
        source_order: Sequence[str],
        default_strategy: MergeStrategy = MergeStrategy.FIRST,
    ) -> Dict[str, AttributeValue]:
        """Recompute the current view and return it."""
        current: Dict[str, AttributeValue] = dict(self.previous)
        current.update(self.identity)

        mapped = set()
        for attribute_map in attribute_maps:
            mapped.add(attribute_map.new_attribute)
            mapped.update(attribute_map.existing_attributes)

        unmapped = []
        for source in self._ordered_sources(source_order):
            for contribution in self.sources[source]:
                unmapped.extend(name for name in contribution if name not in mapped and name not in unmapped)

        for name in unmapped:
            value = self.merge([name], default_strategy, source_order)
            if value is not None:
                current[name] = value

        for attribute_map in attribute_maps:
            names = attribute_map.existing_attributes or [attribute_map.new_attribute]
            strategy = attribute_map.merge or default_strategy
            value = self.merge(names, strategy, source_order, source=attribute_map.source)
            if value is not None:
                current[attribute_map.new_attribute] = value

        self.current = current
        return current
