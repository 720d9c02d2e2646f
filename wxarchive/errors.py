"""Error taxonomy for the archive pipeline."""


class ArchiveError(Exception):
    """Structured pipeline error with category metadata and a remediation hint."""

    def __init__(self, category: str, message: str, hint: str = ""):
        super().__init__(message)
        self.category = category
        self.message = message
        self.hint = hint


class FeedError(ArchiveError):
    """Article list pagination failed; ends the batch."""

    def __init__(self, message: str, hint: str = ""):
        super().__init__("FEED", message, hint)


class AntiBotAbort(ArchiveError):
    """Verification page kept coming back past the retry ceiling."""

    def __init__(self, message: str, hint: str = ""):
        super().__init__("ANTI_BOT", message, hint)


class DatabaseError(ArchiveError):
    def __init__(self, message: str, hint: str = ""):
        super().__init__("DB", message, hint)


class ExtractionError(ArchiveError):
    def __init__(self, message: str):
        super().__init__("EXTRACT", message)


class SinkError(ArchiveError):
    def __init__(self, sink: str, message: str):
        super().__init__("SINK", message)
        self.sink = sink


class FilterRuleError(ArchiveError):
    def __init__(self, message: str):
        super().__init__("CONFIG", message)
