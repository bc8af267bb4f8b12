class NegotiationError(Exception):
    pass


class NoAcceptableRepresentation(NegotiationError):
    """
    Raised when a header family has no value acceptable to the client.

    ``families`` lists every family that failed; with the default
    short-circuit policy it holds exactly one.
    """

    def __init__(self, *families: str) -> None:
        if not families:
            raise ValueError("NoAcceptableRepresentation needs at least one header family")
        self.families = families
        super().__init__(f"No acceptable representation for {', '.join(families)}")

    @property
    def family(self) -> str:
        return self.families[0]
