"""
HTTP Accept* header parsing utilities.
"""
import logging
import re
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

# RFC 7231 section 5.3.1: qvalue = ( "0" [ "." 0*3DIGIT ] ) / ( "1" [ "." 0*3("0") ] )
_QVALUE_RE = re.compile(r"0(?:\.[0-9]{0,3})?|1(?:\.0{0,3})?")

# separators followed by an even number of double quotes, i.e. outside quoted strings
_COMMA_RE = re.compile(r',(?=(?:[^"]*"[^"]*")*[^"]*\Z)')
_SEMICOLON_RE = re.compile(r';(?=(?:[^"]*"[^"]*")*[^"]*\Z)')


@dataclass(frozen=True)
class ClientEntry:
    """One weighted entry of an Accept* header, e.g. ``text/html;level=1;q=0.8``."""

    value: str
    quality: float = 1.0
    parameters: dict[str, str] = field(default_factory=dict)
    position: int = 0


def parse_quality(raw: str) -> float:
    """
    Parses a q-factor. Anything that is not a valid RFC 7231 qvalue
    (including values above 1 or below 0) means "not acceptable".
    """
    raw = raw.strip()
    if not _QVALUE_RE.fullmatch(raw):
        logger.debug("Invalid q-factor %r treated as 0", raw)
        return 0.0
    return float(raw)


def parse_parameters(components: list[str]) -> tuple[float, dict[str, str]]:
    """
    Splits ``name=value`` parameters. Returns the q-factor (1.0 if absent)
    and the remaining parameters with lower-cased names.
    """
    q_val = 1.0
    params: dict[str, str] = {}

    for param in components:
        name, sep, value = param.partition("=")
        name = name.strip().lower()
        if not sep or not name:
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] == '"':
            value = value[1:-1]
        if name == "q":
            q_val = parse_quality(value)
        else:
            params[name] = value

    return q_val, params


def parse_part(part: str, position: int = 0) -> ClientEntry | None:
    """
    Parses a single part of an Accept* header (e.g., "gzip;q=0.8").
    Returns a ClientEntry or None if the part is empty.
    """
    part = part.strip()
    if not part:
        return None

    components = _SEMICOLON_RE.split(part)
    value = components[0].strip()
    if not value:
        logger.debug("Dropping header segment without a value: %r", part)
        return None

    q_val, params = parse_parameters(components[1:])
    return ClientEntry(value=value, quality=q_val, parameters=params, position=position)


def parse_header(header: str | None) -> list[ClientEntry]:
    """
    Parses an Accept* header into its entries, highest q-factor first.

    Entries with equal q-factors keep the order in which the client listed
    them. A missing or entirely malformed header gives an empty list.
    """
    if not header:
        return []

    entries: list[ClientEntry] = []
    for part_str in _COMMA_RE.split(header):
        parsed = parse_part(part_str, position=len(entries))
        if parsed:
            entries.append(parsed)

    entries.sort(key=lambda entry: (-entry.quality, entry.position))
    return entries
