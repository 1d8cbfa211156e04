from __future__ import annotations

from typing import NewType

from dissect.regfs.c_regfs import FIRST_HBIN_OFFSET, NO_CELL

# Offset of a cell from the start of the hive region, used as its identifier
AbsoluteAddress = NewType("AbsoluteAddress", int)

# HCELL_INDEX as stored on disk, relative to the first bin
BinRelativeOffset = NewType("BinRelativeOffset", int)


def to_absolute(offset: BinRelativeOffset, base: int = FIRST_HBIN_OFFSET) -> AbsoluteAddress:
    return AbsoluteAddress(base + offset)


def to_absolute_or_none(offset: BinRelativeOffset, base: int = FIRST_HBIN_OFFSET) -> AbsoluteAddress | None:
    """Translate an on-disk cell index, mapping the ``NO_CELL`` sentinel to ``None``."""
    if offset == NO_CELL:
        return None
    return to_absolute(offset, base)
