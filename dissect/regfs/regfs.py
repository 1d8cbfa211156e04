from __future__ import annotations

import logging
import os
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, BinaryIO

from dissect.util.ts import wintimestamp

from dissect.regfs.address import AbsoluteAddress, BinRelativeOffset, to_absolute
from dissect.regfs.base import BlockFlag, Cell, CellFilesystem, RecordType
from dissect.regfs.c_regfs import (
    BIG_DATA_SEGMENT_SIZE,
    CELL_HEADER_SIZE,
    FIRST_HBIN_OFFSET,
    HBIN_HEADER_SIZE,
    HBIN_SIGNATURE,
    HBIN_SIZE,
    MAX_NAME_LENGTH,
    MIN_CELL_SIZE,
    NO_CELL,
    REGF_SIGNATURE,
    KeyFlag,
    c_regfs,
)
from dissect.regfs.exceptions import (
    CorruptCellError,
    InvalidHeaderError,
    OutOfRangeError,
    ReadError,
    RegistryKeyNotFoundError,
    RegistryValueNotFoundError,
    StructuralCorruptionError,
)
from dissect.regfs.image import HiveImage
from dissect.regfs.records import (
    BigDataRecord,
    FastLeaf,
    HashLeaf,
    IndexRoot,
    KeyRecord,
    Record,
    SubkeyList,
    ValueRecord,
    decode_record,
)
from dissect.regfs.util import decode16, fold_name, hashname, name_equals, xor32_crc

if TYPE_CHECKING:
    from collections.abc import Iterator

log = logging.getLogger(__name__)
log.setLevel(os.getenv("DISSECT_LOG_REGFS", "CRITICAL"))


class RegistryHive(CellFilesystem):
    """A Windows Registry hive, exposed as a filesystem of cells.

    Opening validates the base block and derives the bounds of the cell
    address space. Nothing is cached, every cell and record is read from the
    image when asked for.

    Args:
        fh: File-like object or :class:`HiveImage` holding the hive.
        offset: Byte offset of the hive within ``fh``.
        max_name_length: Safety ceiling for key, value and class name lengths.
        max_cell_size: Safety ceiling for cell sizes, cells of this size or larger are corrupt.
    """

    def __init__(
        self,
        fh: BinaryIO | HiveImage,
        offset: int = 0,
        max_name_length: int = MAX_NAME_LENGTH,
        max_cell_size: int = HBIN_SIZE,
    ):
        self.image = fh if isinstance(fh, HiveImage) else HiveImage(fh, offset)
        self.max_name_length = max_name_length
        self.max_cell_size = max_cell_size

        try:
            data = self.image.read(0, len(c_regfs._HBASE_BLOCK))
        except ReadError as e:
            raise InvalidHeaderError("Truncated REGF header") from e

        self.header = c_regfs._HBASE_BLOCK(data)
        if self.header.Signature != REGF_SIGNATURE:
            raise InvalidHeaderError(f"REGF header has an invalid magic {self.header.Signature!r}")

        self.major_version = self.header.Major
        self.version = self.header.Minor
        self.name = decode16(self.header.FileName)

        self.sequence1 = self.header.Sequence1
        self.sequence2 = self.header.Sequence2
        self.synchronized = self.sequence1 == self.sequence2
        if not self.synchronized:
            log.warning(
                "The hive %r is not synchronized (sequence %d != %d), may not be able to read keys and values properly",
                self.name,
                self.sequence1,
                self.sequence2,
            )
        else:
            log.debug("Hive %r is synchronized", self.name)

        self.dirty = xor32_crc(data[:508]) != self.header.CheckSum
        if self.dirty:
            log.warning("Checksum failed, the %r hive is dirty, recovery may be needed", self.name)
        else:
            log.debug("Hive %r checksum OK", self.name)

        # The base block occupies the first bin sized slot, cells start after the
        # header of the first bin
        self.first_bin = FIRST_HBIN_OFFSET
        self.first_block = self.first_bin + HBIN_HEADER_SIZE
        self.last_block = self.header.Length + HBIN_SIZE
        self.last_block_act = self.image.size - HBIN_SIZE
        self.root_key_address = to_absolute(BinRelativeOffset(self.header.RootCell), self.first_bin)

    def __repr__(self) -> str:
        return f"<RegistryHive {self.name!r} first_block=0x{self.first_block:x} last_block=0x{self.last_block:x}>"

    @property
    def timestamp(self) -> datetime:
        return wintimestamp(self.header.TimeStamp)

    def load_cell(self, address: AbsoluteAddress) -> Cell:
        if not self.first_block <= address <= self.last_block:
            raise OutOfRangeError(
                f"Invalid cell address to load: 0x{address:x} "
                f"(valid range 0x{self.first_block:x}-0x{self.last_block:x})"
            )

        return parse_cell_header(address, self.image.read(address, CELL_HEADER_SIZE), self.max_cell_size)

    def read_cell(self, cell: Cell) -> bytes:
        """Return the payload of ``cell``, everything following its size field."""
        return self.image.read(cell.address, cell.length)[4:]

    def cell_data(self, address: AbsoluteAddress) -> bytes:
        return self.read_cell(self.load_cell(address))

    def record(self, address: AbsoluteAddress) -> Record:
        return decode_record(self, self.load_cell(address))

    def istat(self, address: AbsoluteAddress, sec_skew: int = 0) -> CellReport:
        cell = self.load_cell(address)
        return CellReport(cell, decode_record(self, cell), sec_skew)

    def iter_cells(
        self, start: int | None = None, end: int | None = None, flags: BlockFlag = BlockFlag.NONE
    ) -> Iterator[tuple[Cell, BlockFlag]]:
        """Sequentially scan the cells in ``[start, end)``, yielding the ones selected by ``flags``.

        Bin headers are skipped. A cell that does not end within its own bin
        raises :class:`StructuralCorruptionError`, errors from loading a cell
        end the scan. Cells yielded before an error are not taken back.
        """
        start = self.first_block if start is None else start
        end = self.last_block if end is None else end

        if not self.first_block <= start <= self.last_block:
            raise OutOfRangeError(f"Invalid walk start: 0x{start:x}")

        # The end may also be where the scan lands after skipping past the last bin
        if not self.first_block <= end <= self.last_block + HBIN_HEADER_SIZE:
            raise OutOfRangeError(f"Invalid walk end: 0x{end:x}")

        flags = BlockFlag(flags).normalize()
        log.debug("Walking cells 0x%x to 0x%x with %r", start, end, flags)

        addr = start
        bin_start = addr - (addr % HBIN_SIZE)
        if addr < bin_start + HBIN_HEADER_SIZE:
            addr = bin_start + HBIN_HEADER_SIZE

        while addr < end:
            cell = self.load_cell(AbsoluteAddress(addr))

            if addr + cell.length > bin_start + HBIN_SIZE:
                raise StructuralCorruptionError(
                    f"Cell at 0x{addr:x} of size 0x{cell.length:x} overruns its bin at 0x{bin_start:x}",
                    addr,
                    bin_start,
                )

            cell_flags = cell.flags
            if flags.matches(cell_flags):
                yield cell, cell_flags

            addr += cell.length

            if addr >= bin_start + HBIN_SIZE:
                bin_start += HBIN_SIZE
                addr = bin_start + HBIN_HEADER_SIZE

    def bins(self) -> Iterator[tuple[AbsoluteAddress, object]]:
        """Yield the address and header of every bin, following the sizes recorded in the bin headers."""
        offset = self.first_bin
        while offset < self.last_block:
            try:
                header = c_regfs._HBIN(self.image.read(offset, len(c_regfs._HBIN)))
            except ReadError:
                log.debug("Hive %r is truncated at bin 0x%x", self.name, offset)
                break

            if header.Signature != HBIN_SIGNATURE:
                log.debug("Invalid bin signature %r at 0x%x", header.Signature, offset)
                break

            yield AbsoluteAddress(offset), header

            if header.Size < HBIN_SIZE or header.Size % HBIN_SIZE:
                log.debug("Invalid bin size 0x%x at 0x%x", header.Size, offset)
                break
            offset += header.Size

    def statistics(self) -> HiveStatistics:
        stats = HiveStatistics(bins=sum(1 for _ in self.bins()))

        for cell, _ in self.iter_cells():
            if cell.is_allocated:
                stats.active_cells += 1
                stats.active_bytes += cell.length
            else:
                stats.inactive_cells += 1
                stats.inactive_bytes += cell.length
            stats.records[cell.record_type] += 1

        return stats

    def root(self) -> KeyRecord:
        return self._key(self.root_key_address)

    def open(self, path: str) -> KeyRecord:
        path = path.strip("\\")
        parts = path.split("\\") if path else []

        node = self.root()
        for part in parts:
            node = self.subkey(node, part)

        return node

    def parent(self, key: KeyRecord) -> KeyRecord | None:
        if key.is_root or KeyFlag.HIVE_ENTRY in key.flags:
            return None
        return self._key(key.parent)

    def key_path(self, key: KeyRecord) -> str:
        # The path is relative to the hive, the name of the root key is not
        # part of it
        parts = []

        current = key
        while (parent := self.parent(current)) is not None:
            parts.append(current.name)
            current = parent

        return "\\".join(reversed(parts))

    def subkey_list(self, key: KeyRecord) -> SubkeyList | None:
        if not key.subkey_count or key.subkey_list is None:
            return None

        subkey_list = self.record(key.subkey_list)
        if not isinstance(subkey_list, SubkeyList):
            raise CorruptCellError(
                f"Key {key.name!r} refers to a {subkey_list.record_type.name} record as its subkey list",
                subkey_list.address,
            )

        if key.subkey_count != subkey_list.count and not isinstance(subkey_list, IndexRoot):
            log.debug(
                "KeyRecord %s has %d subkeys, while the %s has %d elements",
                key.name,
                key.subkey_count,
                subkey_list.__class__.__name__,
                subkey_list.count,
            )

        return subkey_list

    def leaves(self, subkey_list: SubkeyList) -> Iterator[SubkeyList]:
        """Resolve the indirection of an index root into the leaves it refers to."""
        if not isinstance(subkey_list, IndexRoot):
            yield subkey_list
            return

        for entry in subkey_list:
            leaf = self.record(entry.address)
            if not isinstance(leaf, SubkeyList) or isinstance(leaf, IndexRoot):
                raise CorruptCellError(
                    f"Index root at 0x{subkey_list.address:x} refers to a {leaf.record_type.name} record",
                    leaf.address,
                )
            yield leaf

    def subkeys(self, key: KeyRecord) -> Iterator[KeyRecord]:
        if (subkey_list := self.subkey_list(key)) is None:
            return

        for leaf in self.leaves(subkey_list):
            for entry in leaf:
                yield self._key(entry.address)

    def subkey(self, key: KeyRecord, name: str) -> KeyRecord:
        if subkey_list := self.subkey_list(key):
            name_hash = hashname(name)
            name_hint = fold_name(name)[:4]

            for leaf in self.leaves(subkey_list):
                for entry in leaf:
                    if isinstance(leaf, HashLeaf) and entry.hash != name_hash:
                        continue

                    if isinstance(leaf, FastLeaf):
                        # Names shorter than four characters have their hint
                        # padded with NUL bytes
                        hint = entry.hint.rstrip(b"\x00").decode("latin1")
                        if fold_name(hint) != name_hint:
                            continue

                    if name_equals((sk := self._key(entry.address)).name, name):
                        return sk

        raise RegistryKeyNotFoundError(name)

    def values(self, key: KeyRecord) -> Iterator[ValueRecord]:
        if not key.value_count or key.value_list is None:
            return

        list_cell = self.load_cell(key.value_list)
        data = self.read_cell(list_cell)

        num_values = key.value_count
        if len(data) // 4 < num_values:
            raise CorruptCellError(
                f"Value list of key {key.name!r} holds {len(data) // 4} entries, {num_values} expected",
                list_cell.address,
                num_values * 4 + 4,
                list_cell.length,
            )

        for entry in c_regfs.uint32[num_values](data[: num_values * 4]):
            if entry in (0, NO_CELL):
                continue

            value = self.record(to_absolute(BinRelativeOffset(entry), self.first_bin))
            if not isinstance(value, ValueRecord):
                raise CorruptCellError(
                    f"Value list of key {key.name!r} refers to a {value.record_type.name} record",
                    value.address,
                )
            yield value

    def value(self, key: KeyRecord, name: str) -> ValueRecord:
        for value in self.values(key):
            if name_equals(value.name, name):
                return value

        raise RegistryValueNotFoundError(name)

    def segments(self, record: BigDataRecord) -> list[AbsoluteAddress]:
        list_cell = self.load_cell(record.segment_list)
        data = self.read_cell(list_cell)

        if len(data) < record.count * 4:
            raise CorruptCellError(
                f"Segment list of big data record at 0x{record.address:x} is too small for {record.count} entries",
                list_cell.address,
                record.count * 4 + 4,
                list_cell.length,
            )

        if not record.count:
            return []

        return [
            to_absolute(BinRelativeOffset(segment), self.first_bin)
            for segment in c_regfs.uint32[record.count](data[: record.count * 4])
        ]

    def value_data(self, value: ValueRecord) -> bytes:
        """Return the raw data bytes of ``value``, without interpreting them according to its type."""
        if value.is_inline:
            return value.inline_data

        if value.data_address is None:
            return b""

        if value.is_big_data:
            big_data = self.record(value.data_address)
            if not isinstance(big_data, BigDataRecord):
                raise CorruptCellError(
                    f"Expected a big data record at 0x{value.data_address:x}, got {big_data.record_type.name}",
                    big_data.address,
                )

            parts = [self.cell_data(segment)[:BIG_DATA_SEGMENT_SIZE] for segment in self.segments(big_data)]
            data = b"".join(parts)
        else:
            data = self.cell_data(value.data_address)

        if len(data) < value.size:
            raise CorruptCellError(
                f"Data of value {value.name!r} is {len(data)} bytes, {value.size} expected",
                value.data_address,
                value.size,
                len(data),
            )

        return data[: value.size]

    def _key(self, address: AbsoluteAddress) -> KeyRecord:
        key = self.record(address)
        if not isinstance(key, KeyRecord):
            raise CorruptCellError(f"Expected a key record at 0x{address:x}, got {key.record_type.name}", address)
        return key


@dataclass
class HiveStatistics:
    bins: int = 0
    active_cells: int = 0
    inactive_cells: int = 0
    active_bytes: int = 0
    inactive_bytes: int = 0
    records: Counter[RecordType] = field(default_factory=Counter)


@dataclass(frozen=True)
class CellReport:
    """Everything known about a single cell, for record detail reporting."""

    cell: Cell
    record: Record
    sec_skew: int = 0

    @property
    def mtime(self) -> datetime | None:
        if isinstance(self.record, KeyRecord):
            return self.record.mtime
        return None

    @property
    def adjusted_mtime(self) -> datetime | None:
        if isinstance(self.record, KeyRecord) and self.sec_skew:
            return self.record.adjusted_mtime(self.sec_skew)
        return None


def parse_cell_header(address: AbsoluteAddress, buf: bytes, max_cell_size: int = HBIN_SIZE) -> Cell:
    """Classify a cell from its first six bytes.

    The size field is signed, allocated cells store their size negated.
    """
    header = c_regfs._CELL_HEADER(buf)

    allocated = False
    if (size := header.Size) < 0:
        size = -size
        allocated = True

    if size >= max_cell_size:
        raise CorruptCellError(
            f"Registry cell at 0x{address:x} corrupt: size too large (0x{size:x})", address, max_cell_size, size
        )

    if size < MIN_CELL_SIZE:
        raise CorruptCellError(
            f"Registry cell at 0x{address:x} corrupt: size too small (0x{size:x})", address, MIN_CELL_SIZE, size
        )

    return Cell(
        address=address,
        length=size,
        is_allocated=allocated,
        record_type=RecordType(header.Signature),
        tag=header.Signature,
    )


def open_hive(fh: BinaryIO | HiveImage, offset: int = 0, **kwargs) -> RegistryHive:
    return RegistryHive(fh, offset, **kwargs)
