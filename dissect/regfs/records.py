from __future__ import annotations

import logging
import os
import struct
from datetime import datetime, timedelta
from functools import cached_property
from typing import TYPE_CHECKING, NamedTuple

from dissect.util.ts import wintimestamp

from dissect.regfs.address import AbsoluteAddress, BinRelativeOffset, to_absolute, to_absolute_or_none
from dissect.regfs.base import Cell, RecordType
from dissect.regfs.c_regfs import (
    BIG_DATA_MIN_VERSION,
    BIG_DATA_SEGMENT_SIZE,
    DATA_INLINE_FLAG,
    NO_CELL,
    ROOT_KEY_FLAGS,
    STABLE,
    VOLATILE,
    KeyFlag,
    ValueFlag,
    c_regfs,
)
from dissect.regfs.exceptions import ClassNameDecodeError, CorruptCellError
from dissect.regfs.util import decode16_strict, decode_name

if TYPE_CHECKING:
    from dissect.regfs.regfs import RegistryHive

log = logging.getLogger(__name__)
log.setLevel(os.getenv("DISSECT_LOG_REGFS", "CRITICAL"))


class Record:
    """Base class of all decoded cell payloads.

    ``data`` holds the payload of the cell, everything after the four byte size
    field. Records are plain values, they keep no reference to the hive they
    were decoded from.
    """

    __type__ = RecordType.UNKNOWN
    __struct__ = None

    def __init__(self, hive: RegistryHive, cell: Cell, data: bytes):
        self.cell = cell
        self.data = data

        if self.__struct__ is not None:
            self._require(len(self.__struct__), f"{self.__class__.__name__} header")
            self.header = self.__struct__(data)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} 0x{self.address:x}>"

    @property
    def address(self) -> AbsoluteAddress:
        return self.cell.address

    @property
    def record_type(self) -> RecordType:
        return self.cell.record_type

    def _require(self, size: int, what: str) -> None:
        if size > len(self.data):
            raise CorruptCellError(
                f"{what} of {size} bytes does not fit in the cell at 0x{self.address:x} "
                f"({len(self.data)} bytes of payload)",
                self.address,
                size + 4,
                self.cell.length,
            )


class KeyRecord(Record):
    __type__ = RecordType.KEY
    __struct__ = c_regfs._CM_KEY_NODE

    def __init__(self, hive: RegistryHive, cell: Cell, data: bytes):
        super().__init__(hive, cell, data)
        nk = self.header

        self.flags = KeyFlag(nk.Flags)
        # The root indicator is compared as a whole, not as individual flags
        self.is_root = nk.Flags == ROOT_KEY_FLAGS
        self.timestamp = nk.LastWriteTime

        self.parent = to_absolute(BinRelativeOffset(nk.Parent), hive.first_bin)
        self.subkey_count = nk.SubKeyCounts[STABLE]
        self.volatile_subkey_count = nk.SubKeyCounts[VOLATILE]
        self.subkey_list = to_absolute_or_none(nk.SubKeyLists[STABLE], hive.first_bin)
        self.value_count = nk.ValueList.Count
        self.value_list = to_absolute_or_none(nk.ValueList.List, hive.first_bin)
        self.security = to_absolute_or_none(nk.Security, hive.first_bin)

        name_length = nk.NameLength
        if name_length > hive.max_name_length:
            raise CorruptCellError(
                f"Key name length {name_length} at 0x{self.address:x} exceeds the limit of {hive.max_name_length}",
                self.address,
                hive.max_name_length,
                name_length,
            )

        name_offset = len(self.__struct__)
        self._require(name_offset + name_length, "Key name")
        self.name = decode_name(data[name_offset : name_offset + name_length], KeyFlag.COMP_NAME in self.flags)

        self.class_name_length = nk.ClassLength
        self.class_name_address = None
        self.class_name = None
        if nk.Class != NO_CELL:
            self.class_name_address = to_absolute(BinRelativeOffset(nk.Class), hive.first_bin)
            self.class_name = self._read_class_name(hive)

    def __repr__(self) -> str:
        return f"<KeyRecord 0x{self.address:x} {self.name}>"

    def _read_class_name(self, hive: RegistryHive) -> str:
        if self.class_name_length > hive.max_name_length:
            raise CorruptCellError(
                f"Class name length {self.class_name_length} of key at 0x{self.address:x} "
                f"exceeds the limit of {hive.max_name_length}",
                self.address,
                hive.max_name_length,
                self.class_name_length,
            )

        # The class name cell is read directly, skipping its size field
        blob = hive.image.read(self.class_name_address + 4, self.class_name_length)
        try:
            return decode16_strict(blob)
        except UnicodeDecodeError as e:
            raise ClassNameDecodeError(
                f"Failed to decode class name at 0x{self.class_name_address:x} of key at 0x{self.address:x}",
                self.address,
            ) from e

    @cached_property
    def mtime(self) -> datetime:
        return wintimestamp(self.timestamp)

    def adjusted_mtime(self, sec_skew: int = 0) -> datetime:
        """Return the modification time corrected for a clock skew of ``sec_skew`` seconds."""
        return self.mtime - timedelta(seconds=sec_skew)


class ValueRecord(Record):
    __type__ = RecordType.VALUE
    __struct__ = c_regfs._CM_KEY_VALUE

    def __init__(self, hive: RegistryHive, cell: Cell, data: bytes):
        super().__init__(hive, cell, data)
        vk = self.header

        self.flags = ValueFlag(vk.Flags)
        self.type = vk.Type
        self.data_length = vk.DataLength
        self.data_offset = BinRelativeOffset(vk.Data)

        name_length = vk.NameLength
        if name_length > hive.max_name_length:
            raise CorruptCellError(
                f"Value name length {name_length} at 0x{self.address:x} exceeds the limit of {hive.max_name_length}",
                self.address,
                hive.max_name_length,
                name_length,
            )

        if name_length == 0:
            self.name = "(Default)"
        else:
            name_offset = len(self.__struct__)
            self._require(name_offset + name_length, "Value name")
            self.name = decode_name(data[name_offset : name_offset + name_length], ValueFlag.COMP_NAME in self.flags)

        # Inline data lives in the offset field itself
        self.data_address = None if self.is_inline else to_absolute_or_none(self.data_offset, hive.first_bin)
        self.is_big_data = (
            hive.version > BIG_DATA_MIN_VERSION and not self.is_inline and self.size > BIG_DATA_SEGMENT_SIZE
        )

    def __repr__(self) -> str:
        return f"<ValueRecord 0x{self.address:x} {self.name} type=0x{self.type:x} size={self.size}>"

    @property
    def size(self) -> int:
        return self.data_length & ~DATA_INLINE_FLAG

    @property
    def is_inline(self) -> bool:
        return bool(self.data_length & DATA_INLINE_FLAG)

    @property
    def inline_data(self) -> bytes | None:
        if not self.is_inline:
            return None

        if self.size > 4:
            log.debug("Inline data of value %r at 0x%x claims %d bytes", self.name, self.address, self.size)
        return struct.pack("<I", self.data_offset)[: self.size]


class SubkeyEntry(NamedTuple):
    address: AbsoluteAddress
    hash: int | None = None
    hint: bytes | None = None


class SubkeyList(Record):
    __struct__ = c_regfs._CM_KEY_INDEX_HEADER
    __entry__ = c_regfs.uint32
    __entry_size__ = 4

    def __init__(self, hive: RegistryHive, cell: Cell, data: bytes):
        super().__init__(hive, cell, data)
        self.count = self.header.Count

        header_size = len(self.__struct__)
        entry_size = self.__entry_size__
        self._require(header_size + self.count * entry_size, f"List of {self.count} entries")

        self.entries = []
        if self.count:
            raw = data[header_size : header_size + self.count * entry_size]
            self.entries = [self._entry(hive, entry) for entry in self.__entry__[self.count](raw)]

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} 0x{self.address:x} count={self.count}>"

    def __len__(self) -> int:
        return self.count

    def __iter__(self):
        return iter(self.entries)

    def _entry(self, hive: RegistryHive, entry) -> SubkeyEntry:
        return SubkeyEntry(to_absolute(BinRelativeOffset(entry), hive.first_bin))


class IndexLeaf(SubkeyList):
    __type__ = RecordType.INDEX_LEAF


class IndexRoot(SubkeyList):
    """Second level index, its entries point to other subkey lists rather than keys."""

    __type__ = RecordType.INDEX_ROOT


class FastLeaf(SubkeyList):
    __type__ = RecordType.FAST_LEAF
    __entry__ = c_regfs._CM_INDEX
    __entry_size__ = 8

    def _entry(self, hive: RegistryHive, entry) -> SubkeyEntry:
        # The hint holds the first four characters of the name, padded with
        # NUL bytes for shorter names
        return SubkeyEntry(to_absolute(BinRelativeOffset(entry.Cell), hive.first_bin), hint=entry.NameHint)


class HashLeaf(SubkeyList):
    __type__ = RecordType.HASH_LEAF
    __entry__ = c_regfs._CM_HASH_INDEX
    __entry_size__ = 8

    def _entry(self, hive: RegistryHive, entry) -> SubkeyEntry:
        return SubkeyEntry(to_absolute(BinRelativeOffset(entry.Cell), hive.first_bin), hash=entry.HashKey)


class SecurityRecord(Record):
    __type__ = RecordType.SECURITY
    __struct__ = c_regfs._CM_KEY_SECURITY

    def __init__(self, hive: RegistryHive, cell: Cell, data: bytes):
        super().__init__(hive, cell, data)
        sk = self.header

        # Security records of a hive form a doubly linked ring
        self.flink = to_absolute(BinRelativeOffset(sk.Flink), hive.first_bin)
        self.blink = to_absolute(BinRelativeOffset(sk.Blink), hive.first_bin)
        self.reference_count = sk.ReferenceCount
        self.descriptor_length = sk.DescriptorLength

        offset = len(self.__struct__)
        self._require(offset + self.descriptor_length, "Security descriptor")
        self.descriptor = data[offset : offset + self.descriptor_length]


class BigDataRecord(Record):
    __type__ = RecordType.BIG_DATA
    __struct__ = c_regfs._CM_BIG_DATA

    def __init__(self, hive: RegistryHive, cell: Cell, data: bytes):
        super().__init__(hive, cell, data)
        self.count = self.header.Count
        self.segment_list = to_absolute(BinRelativeOffset(self.header.List), hive.first_bin)


class UnknownRecord(Record):
    """Opaque cell, usually value data or a value list."""

    def __repr__(self) -> str:
        return f"<UnknownRecord 0x{self.address:x} tag={self.tag!r}>"

    @property
    def tag(self) -> bytes:
        return self.cell.tag


_RECORD_CLASSES = {
    cls.__type__: cls
    for cls in (
        KeyRecord,
        ValueRecord,
        FastLeaf,
        HashLeaf,
        IndexLeaf,
        IndexRoot,
        SecurityRecord,
        BigDataRecord,
        UnknownRecord,
    )
}


def decode_record(hive: RegistryHive, cell: Cell) -> Record:
    """Read the full cell and decode its payload according to the record type of ``cell``."""
    data = hive.read_cell(cell)
    return _RECORD_CLASSES[cell.record_type](hive, cell, data)
