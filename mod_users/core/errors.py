class ModUsersError(Exception):
    """Base class for errors raised by mod_users."""


class QueryParseError(ModUsersError):
    """Malformed or unsupported CQL. Reported to the client as a 400."""

    def __init__(self, message: str, fragment: str = ""):
        super().__init__(message)
        self.fragment = fragment

    def __str__(self) -> str:
        message = super().__str__()
        if self.fragment:
            return f"{message}: {self.fragment!r}"
        return message


class TranslationError(ModUsersError):
    """The query could not be bound to a known table or view."""


class PersistenceError(ModUsersError):
    """Any failure reported by the storage layer."""


class SerializationError(ModUsersError):
    """A single record could not be serialized for the response stream."""

    def __init__(self, message: str, record_id=None):
        super().__init__(message)
        self.record_id = record_id
