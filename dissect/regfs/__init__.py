from dissect.regfs.address import AbsoluteAddress, BinRelativeOffset, to_absolute
from dissect.regfs.base import BlockFlag, Cell, CellFilesystem, RecordType
from dissect.regfs.exceptions import (
    ClassNameDecodeError,
    CorruptCellError,
    Error,
    InvalidHeaderError,
    OutOfRangeError,
    ReadError,
    RegistryKeyNotFoundError,
    RegistryValueNotFoundError,
    SizeMismatchError,
    StructuralCorruptionError,
    UnsupportedFeatureError,
)
from dissect.regfs.image import HiveImage
from dissect.regfs.regfs import CellReport, HiveStatistics, RegistryHive, open_hive

__all__ = [
    "AbsoluteAddress",
    "BinRelativeOffset",
    "BlockFlag",
    "Cell",
    "CellFilesystem",
    "CellReport",
    "ClassNameDecodeError",
    "CorruptCellError",
    "Error",
    "HiveImage",
    "HiveStatistics",
    "InvalidHeaderError",
    "OutOfRangeError",
    "ReadError",
    "RecordType",
    "RegistryHive",
    "RegistryKeyNotFoundError",
    "RegistryValueNotFoundError",
    "SizeMismatchError",
    "StructuralCorruptionError",
    "UnsupportedFeatureError",
    "open_hive",
    "to_absolute",
]
