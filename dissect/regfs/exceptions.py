from __future__ import annotations


class Error(Exception):
    pass


class InvalidHeaderError(Error):
    pass


class OutOfRangeError(Error):
    pass


class SizeMismatchError(Error):
    """Error carrying the address involved and the expected versus actual size."""

    def __init__(self, message: str, address: int | None = None, expected: int | None = None, actual: int | None = None):
        super().__init__(message)
        self.address = address
        self.expected = expected
        self.actual = actual


class ReadError(SizeMismatchError):
    pass


class CorruptCellError(SizeMismatchError):
    pass


class ClassNameDecodeError(CorruptCellError):
    pass


class StructuralCorruptionError(Error):
    def __init__(self, message: str, address: int | None = None, bin_start: int | None = None):
        super().__init__(message)
        self.address = address
        self.bin_start = bin_start


class UnsupportedFeatureError(Error):
    pass


class RegistryKeyNotFoundError(Error):
    pass


class RegistryValueNotFoundError(Error):
    pass
