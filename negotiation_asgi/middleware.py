import logging
import re
from collections.abc import Iterable, Mapping

from starlette.datastructures import Headers
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp, Receive, Scope, Send

from .exceptions import NoAcceptableRepresentation
from .negotiator import ContentNegotiator, NegotiationResult

logger = logging.getLogger(__name__)


class NegotiationMiddleware:
    """
    Negotiates media type, language, encoding and charset of each request.

    ``priorities`` maps header names to the supported values, most preferred
    first, e.g. ``{"accept": ["application/json", "text/html"]}``. Families
    left out are not negotiated. The result is stored in the request state
    under ``attribute_name``; a request nothing can be served for gets a
    bare 406 response.
    """

    def __init__(
        self,
        app: ASGIApp,
        priorities: Mapping[str, Iterable[str]],
        supply_defaults: bool = True,
        attribute_name: str = "negotiation",
        excluded_handlers: list[str] | None = None,
        report_all_failures: bool = False,
    ) -> None:
        self.app = app
        self.attribute_name = attribute_name
        self.negotiator = ContentNegotiator(
            priorities,
            supply_defaults=supply_defaults,
            report_all_failures=report_all_failures,
        )
        if excluded_handlers:
            self.excluded_handlers = [re.compile(path) for path in excluded_handlers]
        else:
            self.excluded_handlers = []

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or self._is_handler_excluded(scope):
            await self.app(scope, receive, send)
            return

        try:
            result = self.negotiator.negotiate(Headers(scope=scope))
        except NoAcceptableRepresentation as exc:
            logger.info("406 Not Acceptable for %s: %s", scope.get("path", ""), exc)
            response = Response(status_code=406)
            await response(scope, receive, send)
            return

        scope.setdefault("state", {})[self.attribute_name] = result
        await self.app(scope, receive, send)

    def _is_handler_excluded(self, scope: Scope) -> bool:
        handler = scope.get("path", "")
        return any(pattern.search(handler) for pattern in self.excluded_handlers)


def get_negotiation(request: Request, attribute_name: str = "negotiation") -> NegotiationResult | None:
    """The negotiation result attached to ``request``, if the middleware ran."""
    return getattr(request.state, attribute_name, None)
