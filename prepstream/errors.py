# prepstream/errors.py


class FeedError(Exception):
    """Base class for feed engine errors."""


class NetworkFailure(FeedError):
    """The generation service could not be reached, timed out or answered non-2xx."""


class MalformedResponse(FeedError):
    """The generation service answered, but the body failed shape/field validation."""


class StaleEpoch(FeedError):
    """A remote result arrived after the filters changed. A discard condition, not a fault."""

    def __init__(self, request_epoch: int, current_epoch: int):
        super().__init__(f"result for epoch {request_epoch} arrived during epoch {current_epoch}")
        self.request_epoch = request_epoch
        self.current_epoch = current_epoch
