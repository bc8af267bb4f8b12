from .exceptions import NegotiationError, NoAcceptableRepresentation
from .headers import ClientEntry, parse_header
from .matching import MatchResult
from .middleware import NegotiationMiddleware, get_negotiation
from .negotiator import ContentNegotiator, NegotiationResult, Negotiator
from .priorities import HEADER_FAMILIES, PriorityEntry, PriorityTable, PriorityTables

__all__ = [
    "ClientEntry",
    "ContentNegotiator",
    "HEADER_FAMILIES",
    "MatchResult",
    "NegotiationError",
    "NegotiationMiddleware",
    "NegotiationResult",
    "Negotiator",
    "NoAcceptableRepresentation",
    "PriorityEntry",
    "PriorityTable",
    "PriorityTables",
    "get_negotiation",
    "parse_header",
]
