import sys
from pathlib import Path

from dissect.regfs import BlockFlag, regfs
from dissect.regfs.records import KeyRecord


def main() -> None:
    with Path(sys.argv[1]).open("rb") as fh:
        hive = regfs.RegistryHive(fh)

        # Recover deleted keys, they are still walkable as free cells
        for cell, _ in hive.iter_cells(flags=BlockFlag.UNALLOC | BlockFlag.META):
            record = hive.record(cell.address)
            if not isinstance(record, KeyRecord):
                continue

            print(hex(cell.address), "-", record.name, record.mtime, hex(record.parent))


if __name__ == "__main__":
    main()
