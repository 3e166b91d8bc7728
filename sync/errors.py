"""Exception types raised by the feed sync components."""


class FeedSyncError(Exception):
    """Base class for failures that end a sync cycle without changes."""


class TransportFailure(FeedSyncError):
    """The remote feed could not be reached or answered with an error status."""


class MalformedResponse(FeedSyncError):
    """The remote feed answered with a body missing required fields."""


class VersionProbeFailure(FeedSyncError):
    """The version probe did not yield a usable version token."""
