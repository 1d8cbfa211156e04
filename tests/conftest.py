from __future__ import annotations

import io
import struct
from types import SimpleNamespace
from typing import Callable

import pytest

from dissect.regfs import regfs

HBIN_SIZE = 0x1000
HBIN_HEADER_SIZE = 0x20
FIRST_HBIN_OFFSET = 0x1000
NO_CELL = 0xFFFFFFFF
NK_HEADER_SIZE = 76


def align(size: int) -> int:
    return (size + 7) & ~7


def rel(address: int) -> int:
    return address - FIRST_HBIN_OFFSET


def nk(
    name: str,
    flags: int = 0x20,
    parent: int = 0,
    timestamp: int = 0,
    subkey_count: int = 0,
    subkey_list: int = NO_CELL,
    value_count: int = 0,
    value_list: int = NO_CELL,
    security: int = NO_CELL,
    class_offset: int = NO_CELL,
    class_length: int = 0,
    name_length: int | None = None,
) -> bytes:
    blob = name.encode("latin1") if flags & 0x20 else name.encode("utf-16-le")
    header = struct.pack(
        "<2sHQ15IHH",
        b"nk",
        flags,
        timestamp,
        0,
        parent,
        subkey_count,
        0,
        subkey_list,
        NO_CELL,
        value_count,
        value_list,
        security,
        class_offset,
        0,
        0,
        0,
        0,
        0,
        len(blob) if name_length is None else name_length,
        class_length,
    )
    return header + blob


def vk(name: str, data_type: int, data_length: int, data: int, flags: int = 0x1) -> bytes:
    blob = name.encode("latin1") if flags & 0x1 else name.encode("utf-16-le")
    return struct.pack("<2sHIIIHH", b"vk", len(blob), data_length, data, data_type, flags, 0) + blob


def li(offsets: list[int], signature: bytes = b"li") -> bytes:
    return struct.pack(f"<2sH{len(offsets)}I", signature, len(offsets), *offsets)


def ri(offsets: list[int]) -> bytes:
    return li(offsets, b"ri")


def lf(entries: list[tuple[int, bytes]]) -> bytes:
    return struct.pack("<2sH", b"lf", len(entries)) + b"".join(
        struct.pack("<I4s", offset, hint) for offset, hint in entries
    )


def lh(entries: list[tuple[int, int]]) -> bytes:
    return struct.pack("<2sH", b"lh", len(entries)) + b"".join(
        struct.pack("<II", offset, name_hash) for offset, name_hash in entries
    )


def sk(flink: int, blink: int, reference_count: int, descriptor: bytes, descriptor_length: int | None = None) -> bytes:
    length = len(descriptor) if descriptor_length is None else descriptor_length
    return struct.pack("<2sHIIII", b"sk", 0, flink, blink, reference_count, length) + descriptor


def db(count: int, segment_list: int) -> bytes:
    return struct.pack("<2sHI", b"db", count, segment_list)


def name_hash(name: str) -> int:
    value = 0
    for char in name.upper():
        value = (value * 37 + ord(char)) & 0xFFFFFFFF
    return value


class HiveBuilder:
    """Lay out cells sequentially in fixed size bins and produce a hive image."""

    def __init__(self, bins: int = 1):
        self.bins = bins
        self.data = bytearray(FIRST_HBIN_OFFSET + bins * HBIN_SIZE)
        self.cursor = FIRST_HBIN_OFFSET + HBIN_HEADER_SIZE
        self.patches = []

        self.signature = b"regf"
        self.sequence1 = 1
        self.sequence2 = 1
        self.timestamp = 0
        self.minor = 5
        self.name = "SYSTEM"
        self.raw_name = None
        self.root = FIRST_HBIN_OFFSET + HBIN_HEADER_SIZE
        self.checksum = None

        for idx in range(bins):
            offset = FIRST_HBIN_OFFSET + idx * HBIN_SIZE
            self.data[offset : offset + HBIN_HEADER_SIZE] = struct.pack(
                "<4sIIIIQI", b"hbin", idx * HBIN_SIZE, HBIN_SIZE, 0, 0, 0, 0
            )

    def alloc(self, size: int) -> int:
        bin_end = self.cursor - (self.cursor % HBIN_SIZE) + HBIN_SIZE
        if self.cursor + size > bin_end:
            self._free_space(self.cursor, bin_end)
            self.cursor = bin_end + HBIN_HEADER_SIZE

        if self.cursor + size > len(self.data):
            raise ValueError("Hive is full")

        address = self.cursor
        self.cursor += size
        if self.cursor % HBIN_SIZE == 0:
            # Bin is exactly full, continue after the header of the next one
            self.cursor += HBIN_HEADER_SIZE
        return address

    def set_cell(self, address: int, payload: bytes, size: int | None = None, allocated: bool = True) -> None:
        size = size or align(4 + len(payload))
        self.data[address : address + 4] = struct.pack("<i", -size if allocated else size)
        self.data[address + 4 : address + 4 + len(payload)] = payload

    def add(self, payload: bytes, size: int | None = None, allocated: bool = True) -> int:
        size = size or align(4 + len(payload))
        address = self.alloc(size)
        self.set_cell(address, payload, size, allocated)
        return address

    def patch(self, address: int, data: bytes) -> None:
        self.patches.append((address, data))

    def _free_space(self, start: int, end: int) -> None:
        if end > start:
            self.data[start : start + 4] = struct.pack("<i", end - start)

    def build(self) -> bytes:
        data = bytearray(self.data)

        bin_end = self.cursor - (self.cursor % HBIN_SIZE) + HBIN_SIZE
        if bin_end <= len(data):
            data[self.cursor : self.cursor + 4] = struct.pack("<i", bin_end - self.cursor)
        for offset in range(bin_end, len(data), HBIN_SIZE):
            data[offset + HBIN_HEADER_SIZE : offset + HBIN_HEADER_SIZE + 4] = struct.pack(
                "<i", HBIN_SIZE - HBIN_HEADER_SIZE
            )

        struct.pack_into(
            "<4sIIQIIIIIII",
            data,
            0,
            self.signature,
            self.sequence1,
            self.sequence2,
            self.timestamp,
            1,
            self.minor,
            0,
            1,
            rel(self.root),
            self.bins * HBIN_SIZE,
            1,
        )
        raw_name = self.raw_name if self.raw_name is not None else self.name.encode("utf-16-le")
        data[0x30:0x70] = raw_name[:64].ljust(64, b"\x00")

        checksum = 0
        for (value,) in struct.iter_unpack("<I", bytes(data[:508])):
            checksum ^= value
        struct.pack_into("<I", data, 508, checksum if self.checksum is None else self.checksum)

        for address, patch in self.patches:
            data[address : address + len(patch)] = patch

        return bytes(data)

    def open(self, **kwargs) -> regfs.RegistryHive:
        return regfs.RegistryHive(io.BytesIO(self.build()), **kwargs)


@pytest.fixture
def hive_builder() -> Callable[..., HiveBuilder]:
    return HiveBuilder


@pytest.fixture
def sample() -> SimpleNamespace:
    """A small hive with keys, values, subkey lists of every kind, a security record and a deleted key."""
    builder = HiveBuilder(bins=2)
    refs = SimpleNamespace(builder=builder)

    def nk_size(name: str) -> int:
        return align(4 + NK_HEADER_SIZE + len(name))

    refs.root = builder.alloc(nk_size("ROOT"))
    refs.software = builder.alloc(nk_size("Software"))
    refs.system = builder.alloc(nk_size("System"))
    refs.alpha = builder.alloc(nk_size("Alpha"))
    refs.beta = builder.alloc(nk_size("beta"))
    refs.gamma = builder.alloc(nk_size("Gamma"))
    builder.root = refs.root

    refs.security = builder.alloc(align(4 + 20 + 8))
    builder.set_cell(refs.security, sk(rel(refs.security), rel(refs.security), 3, b"\x01\x00\x04\x80" * 2))

    refs.class_name = builder.add("DynDRootClass".encode("utf-16-le"))

    refs.root_list = builder.add(
        lh([(rel(refs.software), name_hash("Software")), (rel(refs.system), name_hash("System"))])
    )
    refs.leaf = builder.add(li([rel(refs.alpha)]))
    refs.fast = builder.add(lf([(rel(refs.beta), b"beta"), (rel(refs.gamma), b"gamm")]))
    refs.index_root = builder.add(ri([rel(refs.leaf), rel(refs.fast)]))

    refs.path_data = builder.add("C:\\Temp".encode("utf-16-le") + b"\x00\x00")
    refs.start_value = builder.add(vk("Start", 4, 0x80000004, 2))
    refs.path_value = builder.add(vk("ImagePath", 1, 16, rel(refs.path_data)))
    refs.value_list = builder.add(struct.pack("<2I", rel(refs.start_value), rel(refs.path_value)))

    builder.set_cell(
        refs.root,
        nk("ROOT", flags=0x2C, timestamp=0x01D1C1BC89A4A000, subkey_count=2, subkey_list=rel(refs.root_list)),
    )
    builder.set_cell(
        refs.software,
        nk(
            "Software",
            parent=rel(refs.root),
            subkey_count=3,
            subkey_list=rel(refs.index_root),
            value_count=2,
            value_list=rel(refs.value_list),
            security=rel(refs.security),
            class_offset=rel(refs.class_name),
            class_length=len("DynDRootClass") * 2,
        ),
    )
    builder.set_cell(refs.system, nk("System", parent=rel(refs.root)))
    builder.set_cell(refs.alpha, nk("Alpha", parent=rel(refs.software)))
    builder.set_cell(refs.beta, nk("beta", parent=rel(refs.software)))
    builder.set_cell(refs.gamma, nk("Gamma", parent=rel(refs.software)))

    refs.deleted = builder.add(nk("Deleted", parent=rel(refs.root)), allocated=False)
    refs.opaque = builder.add(b"\xde\xad" + b"\x00" * 10)

    refs.hive = builder.open()
    return refs


@pytest.fixture
def cells() -> SimpleNamespace:
    """Packers for the payload of each record type."""
    return SimpleNamespace(
        nk=nk,
        vk=vk,
        li=li,
        ri=ri,
        lf=lf,
        lh=lh,
        sk=sk,
        db=db,
        rel=rel,
        align=align,
        name_hash=name_hash,
        NO_CELL=NO_CELL,
    )
