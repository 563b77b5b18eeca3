"""
Exception types raised by neurovox.

Unavailable frames are not exceptions: ``EventSource.load`` returns ``None``
and ``Voxelizer.sample`` returns ``False`` so callers can skip or re-poll.
"""


class ConfigurationError(ValueError):
    """Invalid target, report, circuit or parameter selection. Fatal."""


class PartialWriteError(RuntimeError):
    """Voxelization aborted before every region was written."""
