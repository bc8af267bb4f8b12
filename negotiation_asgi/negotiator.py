"""
Per-request negotiation of the four Accept* header families.
"""
import logging
from collections.abc import Mapping
from dataclasses import dataclass

from .exceptions import NoAcceptableRepresentation
from .headers import parse_header
from .matching import STRATEGIES, MatchResult, MatchStrategy, find_best_match
from .priorities import HEADER_FAMILIES, HeaderFamily, PriorityTable, PriorityTables

logger = logging.getLogger(__name__)


class Negotiator:
    """
    Negotiates one header family. The comparison rules come from the
    strategy, so a single class serves media types, languages, encodings
    and charsets alike.
    """

    def __init__(self, family: HeaderFamily, strategy: MatchStrategy | None = None) -> None:
        self.family = family
        self.strategy = strategy or STRATEGIES[family]

    def negotiate(
        self,
        header: str | None,
        table: PriorityTable | None,
        supply_defaults: bool = True,
    ) -> MatchResult | None:
        """
        Returns the negotiated value, or None when the family is not
        configured. Raises NoAcceptableRepresentation when nothing fits
        and no default may be supplied.
        """
        if not table:
            return None

        clients = parse_header(header)
        if clients:
            result = find_best_match(clients, table, self.strategy)
            if result is not None:
                logger.debug("%s: negotiated %s from %r", self.family, result, header)
                return result

        if not supply_defaults:
            logger.debug("%s: nothing acceptable in %r", self.family, header)
            raise NoAcceptableRepresentation(self.family)

        default = table.default
        logger.debug("%s: falling back to default %s", self.family, default.value)
        return MatchResult(
            family=self.family,
            priority=default,
            quality=1.0,
            is_default=True,
            parameters=default.parameters,
        )


@dataclass(frozen=True)
class NegotiationResult:
    """The outcome for all four families. ``None`` marks a family that was not negotiated."""

    media_type: MatchResult | None = None
    language: MatchResult | None = None
    encoding: MatchResult | None = None
    charset: MatchResult | None = None

    def get(self, family: HeaderFamily) -> MatchResult | None:
        return getattr(self, _RESULT_FIELDS[family])

    def as_dict(self) -> dict[str, str | None]:
        """Negotiated values keyed by header name."""
        results = {}
        for family in HEADER_FAMILIES:
            match = self.get(family)
            results[family] = str(match) if match is not None else None
        return results


_RESULT_FIELDS: dict[HeaderFamily, str] = {
    "accept": "media_type",
    "accept-language": "language",
    "accept-encoding": "encoding",
    "accept-charset": "charset",
}


def collect_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """
    Lower-cases header names and joins repeated headers with ", ", which
    is equivalent for comma-separated lists such as Accept*.
    """
    collected: dict[str, str] = {}
    for name, value in headers.items():
        name = name.lower()
        if name in collected:
            collected[name] = f"{collected[name]}, {value}"
        else:
            collected[name] = value
    return collected


class ContentNegotiator:
    """
    Negotiates a request against a fixed set of priority tables.

    The tables are built once and only read afterwards, so one instance may
    serve any number of concurrent requests.

    By default the first family that fails stops the negotiation. With
    ``report_all_failures`` every family is evaluated and the raised
    exception names all that failed.
    """

    def __init__(
        self,
        tables: PriorityTables | Mapping[str, list[str]],
        supply_defaults: bool = True,
        report_all_failures: bool = False,
    ) -> None:
        if not isinstance(tables, PriorityTables):
            tables = PriorityTables.from_config(tables)
        self.tables = tables
        self.supply_defaults = supply_defaults
        self.report_all_failures = report_all_failures
        self.negotiators = {family: Negotiator(family) for family in HEADER_FAMILIES}

    def negotiate(self, headers: Mapping[str, str]) -> NegotiationResult:
        headers = collect_headers(headers)
        results: dict[str, MatchResult | None] = {}
        failed: list[str] = []

        for family in HEADER_FAMILIES:
            try:
                results[_RESULT_FIELDS[family]] = self.negotiators[family].negotiate(
                    headers.get(family),
                    self.tables.get(family),
                    self.supply_defaults,
                )
            except NoAcceptableRepresentation:
                if not self.report_all_failures:
                    raise
                failed.append(family)

        if failed:
            raise NoAcceptableRepresentation(*failed)
        return NegotiationResult(**results)
