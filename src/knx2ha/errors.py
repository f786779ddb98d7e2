"""Clear exceptions for knx2ha: unreadable archives, bad snapshots and busy parsers."""


class Knx2HaError(Exception):
    """Base exception for knx2ha."""

    pass


class ArchiveError(Knx2HaError):
    """Raised when the project archive itself cannot be opened or read (fatal)."""

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        self.cause = cause
        super().__init__(message)


class DocumentParseError(Knx2HaError):
    """Raised when one XML member cannot be parsed; the scanner recovers from it."""

    def __init__(
        self,
        member: str,
        message: str | None = None,
        *,
        cause: BaseException | None = None,
    ) -> None:
        self.member = member
        self.cause = cause
        self._msg = message or f"Cannot parse document: {member!r}"
        super().__init__(self._msg)


class SnapshotError(Knx2HaError):
    """Raised when a persisted snapshot has the wrong format or misses required data."""

    def __init__(self, message: str, *, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)


class ParserBusyError(Knx2HaError):
    """Raised when a parse is requested while the same parser is already running."""

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or "A parse is already in progress on this parser")
