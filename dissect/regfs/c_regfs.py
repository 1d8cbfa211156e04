from __future__ import annotations

from enum import IntFlag

from dissect.cstruct import cstruct

regfs_def = """
typedef ULONG       HCELL_INDEX;
typedef ULONGLONG   LARGE_INTEGER;

#define HTYPE_COUNT 2

typedef struct _HBASE_BLOCK {
    CHAR            Signature[4];
    ULONG           Sequence1;
    ULONG           Sequence2;
    LARGE_INTEGER   TimeStamp;
    ULONG           Major;
    ULONG           Minor;
    ULONG           Type;
    ULONG           Format;
    HCELL_INDEX     RootCell;
    // Size of the hive bins data, offset of the last bin + bin size
    ULONG           Length;
    ULONG           Cluster;
    // UTF-16-LE, not necessarily terminated
    CHAR            FileName[64];
    ULONG           Reserved1[99];
    ULONG           CheckSum;
    ULONG           Reserved2[0x37e];
    ULONG           BootType;
    ULONG           BootRecover;
} HBASE_BLOCK;

typedef struct _HBIN {
    CHAR            Signature[4];
    HCELL_INDEX     FileOffset;
    ULONG           Size;
    ULONG           Reserved[2];
    LARGE_INTEGER   TimeStamp;
    ULONG           Spare;
} HBIN;

typedef struct _CELL_HEADER {
    // Negative when allocated
    LONG            Size;
    CHAR            Signature[2];
} CELL_HEADER;

typedef struct _CHILD_LIST {
    ULONG           Count;
    HCELL_INDEX     List;
} CHILD_LIST;

typedef struct _CM_KEY_NODE {
    CHAR            Signature[2];
    USHORT          Flags;
    LARGE_INTEGER   LastWriteTime;
    ULONG           Spare;
    HCELL_INDEX     Parent;
    ULONG           SubKeyCounts[HTYPE_COUNT];
    HCELL_INDEX     SubKeyLists[HTYPE_COUNT];
    CHILD_LIST      ValueList;
    HCELL_INDEX     Security;
    HCELL_INDEX     Class;
    ULONG           MaxNameLen;
    ULONG           MaxClassLen;
    ULONG           MaxValueNameLen;
    ULONG           MaxValueDataLen;
    ULONG           WorkVar;
    USHORT          NameLength;
    USHORT          ClassLength;
    // CHAR            Name[NameLength];
} CM_KEY_NODE;

typedef struct _CM_KEY_VALUE {
    CHAR            Signature[2];
    USHORT          NameLength;
    ULONG           DataLength;
    HCELL_INDEX     Data;
    ULONG           Type;
    USHORT          Flags;
    USHORT          Spare;
    // CHAR            Name[NameLength];
} CM_KEY_VALUE;

typedef struct _CM_KEY_INDEX_HEADER {
    CHAR            Signature[2];
    USHORT          Count;
    // List[Count] of HCELL_INDEX, CM_INDEX or CM_HASH_INDEX
} CM_KEY_INDEX_HEADER;

typedef struct _CM_INDEX {
    HCELL_INDEX     Cell;
    CHAR            NameHint[4];
} CM_INDEX;

typedef struct _CM_HASH_INDEX {
    HCELL_INDEX     Cell;
    ULONG           HashKey;
} CM_HASH_INDEX;

typedef struct _CM_KEY_SECURITY {
    CHAR            Signature[2];
    USHORT          Reserved;
    HCELL_INDEX     Flink;
    HCELL_INDEX     Blink;
    ULONG           ReferenceCount;
    ULONG           DescriptorLength;
    // CHAR            Descriptor[DescriptorLength];
} CM_KEY_SECURITY;

typedef struct _CM_BIG_DATA {
    CHAR            Signature[2];
    USHORT          Count;
    HCELL_INDEX     List;
} CM_BIG_DATA;
"""

c_regfs = cstruct().load(regfs_def)

REGF_SIGNATURE = b"regf"
HBIN_SIGNATURE = b"hbin"

# The first bin starts right after the 4 KiB base block, all HCELL_INDEX
# values stored in the hive are relative to it
FIRST_HBIN_OFFSET = 0x1000
HBIN_SIZE = 0x1000
HBIN_HEADER_SIZE = 0x20

# Size field plus the two byte signature
CELL_HEADER_SIZE = 6
MIN_CELL_SIZE = 8

NO_CELL = 0xFFFFFFFF
ROOT_KEY_FLAGS = 0x2C
MAX_NAME_LENGTH = 512

# HSYS_WHISTLER_BETA1, CM_KEY_VALUE_SPECIAL_SIZE, CM_KEY_VALUE_BIG
BIG_DATA_MIN_VERSION = 4
DATA_INLINE_FLAG = 0x80000000
BIG_DATA_SEGMENT_SIZE = 0x3FD8

STABLE = 0
VOLATILE = 1


class KeyFlag(IntFlag):
    IS_VOLATILE = 0x0001
    HIVE_EXIT = 0x0002
    HIVE_ENTRY = 0x0004
    NO_DELETE = 0x0008
    SYM_LINK = 0x0010
    COMP_NAME = 0x0020
    PREDEF_HANDLE = 0x0040
    VIRT_MIRRORED = 0x0080
    VIRT_TARGET = 0x0100
    VIRTUAL_STORE = 0x0200


class ValueFlag(IntFlag):
    COMP_NAME = 0x0001
    TOMBSTONE = 0x0002
