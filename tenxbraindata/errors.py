class DownloadError(IOError):
    """A remote resource could not be fetched, or arrived corrupted."""


class BlockReadError(IOError):
    """A column block could not be read from the on-disk matrix."""


class InvalidArgument(ValueError):
    """Bad chunking parameters, or a chunk plan that does not fit the matrix."""


class CacheMiss(KeyError):
    """No stored result exists under the requested name."""
