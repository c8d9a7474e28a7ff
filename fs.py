import struct
from typing import List

import attr

# Block geometry
BSIZE = 512
ROOTINO = 1

# Inode layout: 4 shorts, 1 uint size, NDIRECT + 1 block addresses
NDIRECT = 12
NINDIRECT = BSIZE // 4
DINODE_SIZE = 64
IPB = BSIZE // DINODE_SIZE  # Inodes per block
BPB = BSIZE * 8  # Bitmap bits per block

# Directory entries: ushort inum + 14 byte name
DIRSIZ = 14
DIRENT_SIZE = 16
DIRENTS_PER_BLOCK = BSIZE // DIRENT_SIZE

SUPERBLOCK_SIZE = 12

# Inode types
T_FREE = 0
T_DIR = 1
T_FILE = 2
T_DEV = 3

VALID_TYPES = (T_DIR, T_FILE, T_DEV)


@attr.s(auto_attribs=True)
class Superblock:
    size: int     # total blocks in the image
    nblocks: int  # data blocks
    ninodes: int

    def pack(self) -> bytes:
        return struct.pack("<III", self.size, self.nblocks, self.ninodes)

    @classmethod
    def unpack(cls, data: bytes) -> "Superblock":
        return cls(*struct.unpack("<III", data[:SUPERBLOCK_SIZE]))


@attr.s(auto_attribs=True)
class Dinode:
    type: int = T_FREE
    major: int = 0
    minor: int = 0
    nlink: int = 0
    size: int = 0
    # addrs[NDIRECT] is the indirect block
    addrs: List[int] = attr.ib(factory=lambda: [0] * (NDIRECT + 1))

    @property
    def direct(self) -> List[int]:
        return self.addrs[:NDIRECT]

    @property
    def indirect(self) -> int:
        return self.addrs[NDIRECT]

    @property
    def allocated(self) -> bool:
        return self.type != T_FREE

    def pack(self) -> bytes:
        return struct.pack(
            "<hhhhI%dI" % (NDIRECT + 1),
            self.type,
            self.major,
            self.minor,
            self.nlink,
            self.size,
            *self.addrs,
        )

    @classmethod
    def unpack(cls, data: bytes) -> "Dinode":
        fields = struct.unpack("<hhhhI%dI" % (NDIRECT + 1), data[:DINODE_SIZE])
        return cls(*fields[:5], addrs=list(fields[5:]))


@attr.s(auto_attribs=True)
class Dirent:
    inum: int
    name: str

    def pack(self) -> bytes:
        name_bytes = self.name.encode("utf-8")[:DIRSIZ]
        return struct.pack("<H%ds" % DIRSIZ, self.inum, name_bytes)

    @classmethod
    def unpack(cls, data: bytes) -> "Dirent":
        inum, raw_name = struct.unpack("<H%ds" % DIRSIZ, data[:DIRENT_SIZE])
        # Names fill all DIRSIZ bytes when they are exactly that long
        name = raw_name.split(b"\x00", 1)[0].decode("utf-8", errors="replace")
        return cls(inum, name)


@attr.s(auto_attribs=True, frozen=True)
class Layout:
    """Block boundaries derived from the superblock.

    The arithmetic truncates on purpose: xv6's mkfs places the bitmap and
    the data region with ``n // per_block + 1`` rather than a ceiling, so a
    checker that rounds differently disagrees with every real image.
    """

    size: int
    nblocks: int
    ninodes: int
    inode_start: int
    num_inode_blocks: int
    bitmap_start: int
    num_bitmap_blocks: int
    data_start: int

    @classmethod
    def from_superblock(cls, sb: Superblock) -> "Layout":
        num_inode_blocks = sb.ninodes // IPB + 1
        num_bitmap_blocks = sb.size // BPB + 1
        inode_start = 2
        return cls(
            size=sb.size,
            nblocks=sb.nblocks,
            ninodes=sb.ninodes,
            inode_start=inode_start,
            num_inode_blocks=num_inode_blocks,
            bitmap_start=inode_start + num_inode_blocks,
            num_bitmap_blocks=num_bitmap_blocks,
            data_start=num_inode_blocks + num_bitmap_blocks + 2,
        )

    def in_data_region(self, address: int) -> bool:
        return self.data_start <= address < self.size

    def inode_offset(self, inum: int) -> int:
        return self.inode_start * BSIZE + inum * DINODE_SIZE


def bit_is_set(bitmap: bytes, index: int) -> bool:
    return bool(bitmap[index // 8] & (1 << (index % 8)))
