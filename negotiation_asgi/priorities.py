"""
Server-side priority lists, one per Accept* header family.
"""
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Literal

from .headers import parse_part

HeaderFamily = Literal["accept", "accept-language", "accept-encoding", "accept-charset"]

# Evaluation order of the families during negotiation
HEADER_FAMILIES: tuple[HeaderFamily, ...] = (
    "accept",
    "accept-language",
    "accept-encoding",
    "accept-charset",
)


@dataclass(frozen=True)
class PriorityEntry:
    value: str
    rank: int
    parameters: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))


@dataclass(frozen=True)
class PriorityTable:
    """
    The values a server supports for one header family, most preferred first.

    The first entry doubles as the default used when the client states no
    preference and defaults are supplied.
    """

    family: HeaderFamily
    entries: tuple[PriorityEntry, ...]

    def __post_init__(self) -> None:
        if self.family not in HEADER_FAMILIES:
            raise ValueError(f"Unknown header family: {self.family!r}")
        if not self.entries:
            raise ValueError(f"Priority table for {self.family!r} must not be empty")

    @property
    def default(self) -> PriorityEntry:
        return self.entries[0]

    def __iter__(self):
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    @classmethod
    def from_values(cls, family: HeaderFamily, values: Iterable[str]) -> "PriorityTable":
        """
        Builds a table from values written in header syntax, e.g.
        ``["text/html; charset=utf-8", "application/json"]``.
        Parameters are kept for media types only; q-factors are ignored.
        """
        entries = []
        for value in values:
            parsed = parse_part(value)
            if parsed is None:
                raise ValueError(f"Empty value in priorities for {family!r}")
            params = parsed.parameters if family == "accept" else {}
            entries.append(
                PriorityEntry(
                    value=parsed.value,
                    rank=len(entries),
                    parameters=MappingProxyType(dict(params)),
                )
            )
        return cls(family=family, entries=tuple(entries))


@dataclass(frozen=True)
class PriorityTables:
    """The full, read-only negotiation configuration. ``None`` means "not negotiated"."""

    accept: PriorityTable | None = None
    accept_language: PriorityTable | None = None
    accept_encoding: PriorityTable | None = None
    accept_charset: PriorityTable | None = None

    def get(self, family: HeaderFamily) -> PriorityTable | None:
        return getattr(self, family.replace("-", "_"))

    @classmethod
    def from_config(cls, priorities: Mapping[str, Iterable[str]]) -> "PriorityTables":
        """
        Builds the tables from ``{header name: [supported values]}``.
        Header names are case-insensitive; missing or empty lists leave the
        family out of negotiation.
        """
        tables: dict[str, PriorityTable] = {}
        for name, values in priorities.items():
            family = name.strip().lower()
            if family not in HEADER_FAMILIES:
                raise ValueError(
                    f"Unknown header {name!r}, expected one of {', '.join(HEADER_FAMILIES)}"
                )
            if isinstance(values, str):
                values = [values]
            values = list(values or [])
            if values:
                tables[family.replace("-", "_")] = PriorityTable.from_values(family, values)
        return cls(**tables)
