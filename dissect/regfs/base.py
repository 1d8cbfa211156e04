from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum, IntFlag
from typing import TYPE_CHECKING, Callable

from dissect.regfs.exceptions import UnsupportedFeatureError

if TYPE_CHECKING:
    from collections.abc import Iterator

    from dissect.regfs.address import AbsoluteAddress
    from dissect.regfs.records import Record


class RecordType(Enum):
    KEY = b"nk"
    VALUE = b"vk"
    FAST_LEAF = b"lf"
    HASH_LEAF = b"lh"
    INDEX_LEAF = b"li"
    INDEX_ROOT = b"ri"
    SECURITY = b"sk"
    BIG_DATA = b"db"
    UNKNOWN = b""

    @classmethod
    def _missing_(cls, value: object) -> RecordType:
        # Unrecognized signatures are not an error, the cell is simply opaque
        return cls.UNKNOWN

    @property
    def is_metadata(self) -> bool:
        return self is not RecordType.UNKNOWN

    @property
    def is_subkey_list(self) -> bool:
        return self in (RecordType.FAST_LEAF, RecordType.HASH_LEAF, RecordType.INDEX_LEAF, RecordType.INDEX_ROOT)


class BlockFlag(IntFlag):
    NONE = 0
    ALLOC = 0x01
    UNALLOC = 0x02
    META = 0x04
    CONT = 0x08

    ALLOC_MASK = ALLOC | UNALLOC
    CONTENT_MASK = META | CONT

    def normalize(self) -> BlockFlag:
        """Widen each axis that has no flag set to both of its flags."""
        flags = self
        if not flags & BlockFlag.ALLOC_MASK:
            flags |= BlockFlag.ALLOC_MASK
        if not flags & BlockFlag.CONTENT_MASK:
            flags |= BlockFlag.CONTENT_MASK
        return flags

    def matches(self, cell_flags: BlockFlag) -> bool:
        return bool(self & cell_flags & BlockFlag.ALLOC_MASK) and bool(self & cell_flags & BlockFlag.CONTENT_MASK)


@dataclass(frozen=True)
class Cell:
    address: AbsoluteAddress
    length: int
    is_allocated: bool
    record_type: RecordType
    tag: bytes

    def __repr__(self) -> str:
        state = "allocated" if self.is_allocated else "free"
        return f"<Cell 0x{self.address:x} size=0x{self.length:x} {state} {self.tag!r}>"

    @property
    def end(self) -> int:
        return self.address + self.length

    @property
    def flags(self) -> BlockFlag:
        flags = BlockFlag.ALLOC if self.is_allocated else BlockFlag.UNALLOC
        flags |= BlockFlag.META if self.record_type.is_metadata else BlockFlag.CONT
        return flags


class CellFilesystem(ABC):
    """Operations surrounding tooling may rely on, regardless of the backing hive implementation.

    Cells play the role of blocks, their addresses double as inode numbers.
    """

    fs_name = "Windows Registry"

    first_block: int
    last_block: int
    root_key_address: int

    @abstractmethod
    def load_cell(self, address: AbsoluteAddress) -> Cell:
        raise NotImplementedError

    @abstractmethod
    def iter_cells(
        self, start: int | None = None, end: int | None = None, flags: BlockFlag = BlockFlag.NONE
    ) -> Iterator[tuple[Cell, BlockFlag]]:
        raise NotImplementedError

    @abstractmethod
    def record(self, address: AbsoluteAddress) -> Record:
        raise NotImplementedError

    def walk(
        self,
        start: int | None,
        end: int | None,
        flags: BlockFlag,
        visit: Callable[[Cell, BlockFlag], None],
    ) -> None:
        # Any exception raised by visit ends the walk and is propagated as is
        for cell, cell_flags in self.iter_cells(start, end, flags):
            visit(cell, cell_flags)

    def fscheck(self) -> None:
        raise UnsupportedFeatureError(f"fscheck is not implemented for the {self.fs_name}")

    def jopen(self, inum: int) -> None:
        self._journal_unsupported()

    def jblk_walk(self, start: int, end: int, flags: int, visit: Callable) -> None:
        self._journal_unsupported()

    def jentry_walk(self, flags: int, visit: Callable) -> None:
        self._journal_unsupported()

    def _journal_unsupported(self) -> None:
        raise UnsupportedFeatureError(f"The {self.fs_name} does not have a journal")
