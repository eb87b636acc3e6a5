"""
Error taxonomy shared by the adapters and the state machine.

    MissingCredential   content key or store credentials absent
    RateLimited         upstream quota exhausted; never retried on a fallback model
    ServiceUnavailable  transport / upstream failure after the single fallback
    ParseError          response was not the JSON shape that was asked for
    StoreError          hosted repository store rejected or failed a request
"""


class CatalogError(Exception):
    """Base for every failure an adapter reports to its caller."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class MissingCredential(CatalogError):
    pass


class RateLimited(CatalogError):
    pass


class ServiceUnavailable(CatalogError):
    pass


class ParseError(CatalogError):
    pass


class StoreError(CatalogError):
    pass
