"""
Matching of parsed client entries against a server priority table.

Each header family compares values differently, so the matcher is generic
and delegates the comparison to a per-family strategy. A strategy answers
one question: does this client entry cover this priority entry, and how
specifically? ``None`` means no match, a larger number a more specific one.
"""
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType

from .headers import ClientEntry
from .priorities import HeaderFamily, PriorityEntry, PriorityTable

logger = logging.getLogger(__name__)


class MatchStrategy:
    def specificity(self, client: ClientEntry, entry: PriorityEntry) -> int | None:
        raise NotImplementedError


class TokenStrategy(MatchStrategy):
    """Accept-Encoding and Accept-Charset: case-insensitive equality or ``*``."""

    def specificity(self, client: ClientEntry, entry: PriorityEntry) -> int | None:
        if client.value.lower() == entry.value.lower():
            return 1
        if client.value == "*":
            return 0
        return None


class MediaTypeStrategy(MatchStrategy):
    """
    Accept: ``type/subtype`` with ``*/*`` and ``type/*`` wildcards.

    Every parameter the client names must be present, with the same value,
    on the server's media type. Each matched parameter adds to specificity,
    so ``text/html;level=1`` beats ``text/html`` which beats ``text/*``.
    """

    def specificity(self, client: ClientEntry, entry: PriorityEntry) -> int | None:
        client_type, client_subtype = split_media_type(client.value)
        entry_type, entry_subtype = split_media_type(entry.value)

        type_equal = client_type == entry_type
        subtype_equal = client_subtype == entry_subtype
        if not (type_equal or client_type == "*"):
            return None
        if not (subtype_equal or client_subtype == "*"):
            return None

        for name, value in client.parameters.items():
            if entry.parameters.get(name) != value:
                return None

        return 100 * type_equal + 10 * subtype_equal + len(client.parameters)


class LanguageStrategy(MatchStrategy):
    """
    Accept-Language: primary tags must agree. A tag without a region
    (``en``) matches any region of the same language (``en-GB``) in either
    direction; two regions must agree exactly.
    """

    def specificity(self, client: ClientEntry, entry: PriorityEntry) -> int | None:
        if client.value == "*":
            return 0

        client_primary, client_sub = split_language(client.value)
        entry_primary, entry_sub = split_language(entry.value)
        if client_primary != entry_primary:
            return None

        sub_equal = client_sub == entry_sub
        if not sub_equal and client_sub and entry_sub:
            return None
        return 10 + sub_equal


STRATEGIES: dict[HeaderFamily, MatchStrategy] = {
    "accept": MediaTypeStrategy(),
    "accept-language": LanguageStrategy(),
    "accept-encoding": TokenStrategy(),
    "accept-charset": TokenStrategy(),
}


def split_media_type(value: str) -> tuple[str, str]:
    type_, _, subtype = value.lower().partition("/")
    # a bare "*" is sent by some old clients and means "*/*"
    if type_ == "*" and not subtype:
        subtype = "*"
    return type_.strip(), subtype.strip()


def split_language(value: str) -> tuple[str, str]:
    primary, _, sub = value.lower().partition("-")
    return primary, sub


@dataclass(frozen=True)
class MatchResult:
    """
    A negotiated value for one header family.

    ``client`` is the header entry that selected ``priority``; it is ``None``
    when the value was supplied as a default.
    """

    family: HeaderFamily
    priority: PriorityEntry
    quality: float
    specificity: int = 0
    client: ClientEntry | None = None
    is_default: bool = False
    parameters: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def value(self) -> str:
        return self.priority.value

    def _split(self) -> tuple[str, str]:
        if self.family == "accept":
            return split_media_type(self.value)
        if self.family == "accept-language":
            return split_language(self.value)
        return self.value, ""

    @property
    def type(self) -> str:
        """
        Media type or primary language tag, e.g. ``text`` or ``en``.
        Encodings and charsets are not split and give the whole value.
        """
        return self._split()[0]

    @property
    def subtype(self) -> str | None:
        """Media subtype or language region, e.g. ``html`` or ``gb``."""
        return self._split()[1] or None

    def get_parameter(self, name: str, default: str | None = None) -> str | None:
        return self.parameters.get(name.lower(), default)

    def has_parameter(self, name: str) -> bool:
        return name.lower() in self.parameters

    def __str__(self) -> str:
        parts = [self.value]
        parts.extend(f"{key}={value}" for key, value in self.parameters.items())
        return "; ".join(parts)


def find_best_match(
    clients: Sequence[ClientEntry],
    table: PriorityTable,
    strategy: MatchStrategy,
) -> MatchResult | None:
    """
    Picks the best priority entry for the given client entries.

    The most specific client entry covering a priority entry decides its
    quality, so ``gzip;q=0, *;q=0.5`` rules gzip out while still accepting
    anything else. The winner maximises (quality, specificity, -rank):
    client weight first, then exactness, then the server's own order.
    Nothing with quality 0 is ever selected.
    """
    best: MatchResult | None = None
    best_score: tuple[float, int, int] | None = None

    for entry in table:
        chosen: ClientEntry | None = None
        chosen_specificity = -1
        # clients are sorted by quality, so on equal specificity the
        # higher weighted entry is kept
        for client in clients:
            specificity = strategy.specificity(client, entry)
            if specificity is not None and specificity > chosen_specificity:
                chosen, chosen_specificity = client, specificity

        if chosen is None:
            continue
        if chosen.quality <= 0:
            logger.debug("%s rejected by client entry %r", entry.value, chosen.value)
            continue

        score = (chosen.quality, chosen_specificity, -entry.rank)
        if best_score is None or score > best_score:
            best_score = score
            best = MatchResult(
                family=table.family,
                priority=entry,
                quality=chosen.quality,
                specificity=chosen_specificity,
                client=chosen,
                parameters=entry.parameters,
            )

    return best
