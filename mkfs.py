import struct
import sys
from typing import List

from fs import (
    BSIZE,
    DIRENT_SIZE,
    DIRENTS_PER_BLOCK,
    NDIRECT,
    NINDIRECT,
    ROOTINO,
    T_DEV,
    T_DIR,
    T_FILE,
    Dinode,
    Dirent,
    Layout,
    Superblock,
)


class ImageBuilder:
    """Lays out an xv6 image in memory.

    Blocks and inodes are handed out sequentially, the way xv6's mkfs does it.
    Besides the regular operations (mkdir, create_file, link, mknod) the raw
    setters let callers corrupt any field before serializing.
    """

    def __init__(self, size: int = 1024, ninodes: int = 200):
        layout = Layout.from_superblock(Superblock(size=size, nblocks=0, ninodes=ninodes))
        if layout.data_start >= size:
            raise ValueError(f"{size} blocks cannot hold {ninodes} inodes and a bitmap")

        self.superblock = Superblock(size=size, nblocks=size - layout.data_start, ninodes=ninodes)
        self.layout = Layout.from_superblock(self.superblock)
        self.data = bytearray(size * BSIZE)
        self.inodes = [Dinode() for _ in range(ninodes)]
        self.next_block = self.layout.data_start
        self.next_inum = ROOTINO

        # Boot block, superblock, inode table and bitmap
        for block in range(self.layout.data_start):
            self.set_bit(block, True)

        self._create_root()

    def _create_root(self):
        root = self.alloc_inode(T_DIR)
        block = self._append_block(root)
        self.set_dirent(block, 0, Dirent(root, "."))
        self.set_dirent(block, 1, Dirent(root, ".."))

    def inode(self, inum: int) -> Dinode:
        return self.inodes[inum]

    def alloc_inode(self, inode_type: int, nlink: int = 1) -> int:
        """Allocate the next inode without linking it anywhere"""
        if self.next_inum >= self.superblock.ninodes:
            raise OSError("No free inodes available")

        inum = self.next_inum
        self.inodes[inum] = Dinode(type=inode_type, nlink=nlink)
        self.next_inum += 1
        return inum

    def alloc_block(self) -> int:
        """Allocate and zero the next data block, marking it in the bitmap"""
        if self.next_block >= self.superblock.size:
            raise OSError("No free blocks available")

        block = self.next_block
        self.next_block += 1
        self.write_block(block, b"")
        self.set_bit(block, True)
        return block

    def _append_block(self, inum: int) -> int:
        """Give the inode one more data block, spilling into its indirect block"""
        inode = self.inodes[inum]
        for i in range(NDIRECT):
            if inode.addrs[i] == 0:
                inode.addrs[i] = self.alloc_block()
                return inode.addrs[i]

        if inode.indirect == 0:
            inode.addrs[NDIRECT] = self.alloc_block()

        for index, address in enumerate(self.indirect_entries(inum)):
            if address == 0:
                block = self.alloc_block()
                self.set_indirect_entry(inum, index, block)
                return block

        raise OSError("File too large")

    def inode_blocks(self, inum: int) -> List[int]:
        """Data blocks of an inode in logical order, indirect block excluded"""
        inode = self.inodes[inum]
        blocks = [address for address in inode.direct if address != 0]
        return blocks + [address for address in self.indirect_entries(inum) if address != 0]

    def indirect_entries(self, inum: int) -> List[int]:
        indirect = self.inodes[inum].indirect
        # Out-of-range indirect blocks only exist in deliberately corrupted images
        if indirect == 0 or indirect >= len(self.data) // BSIZE:
            return []
        return list(struct.unpack_from("<%dI" % NINDIRECT, self.data, indirect * BSIZE))

    def set_indirect_entry(self, inum: int, index: int, address: int):
        struct.pack_into("<I", self.data, self.inodes[inum].indirect * BSIZE + index * 4, address)

    def write_block(self, block: int, data: bytes):
        self.data[block * BSIZE : (block + 1) * BSIZE] = data[:BSIZE].ljust(BSIZE, b"\x00")

    def set_bit(self, block: int, used: bool):
        offset = self.layout.bitmap_start * BSIZE + block // 8
        if used:
            self.data[offset] |= 1 << (block % 8)
        else:
            self.data[offset] &= ~(1 << (block % 8)) & 0xFF

    def set_dirent(self, block: int, slot: int, dirent: Dirent):
        offset = block * BSIZE + slot * DIRENT_SIZE
        self.data[offset : offset + DIRENT_SIZE] = dirent.pack()

    def dirents(self, block: int) -> List[Dirent]:
        base = block * BSIZE
        return [
            Dirent.unpack(bytes(self.data[base + slot * DIRENT_SIZE : base + (slot + 1) * DIRENT_SIZE]))
            for slot in range(DIRENTS_PER_BLOCK)
        ]

    def add_dirent(self, dir_inum: int, name: str, inum: int):
        """Add an entry to a directory, growing it by a block when it is full"""
        if self.inodes[dir_inum].type != T_DIR:
            raise OSError("Not a directory")

        for block in self.inode_blocks(dir_inum):
            for slot, dirent in enumerate(self.dirents(block)):
                if dirent.inum == 0:
                    self.set_dirent(block, slot, Dirent(inum, name))
                    return

        block = self._append_block(dir_inum)
        self.set_dirent(block, 0, Dirent(inum, name))

    def mkdir(self, parent: int, name: str) -> int:
        inum = self.alloc_inode(T_DIR)
        block = self._append_block(inum)
        self.set_dirent(block, 0, Dirent(inum, "."))
        self.set_dirent(block, 1, Dirent(parent, ".."))
        self.add_dirent(parent, name, inum)
        return inum

    def create_file(self, parent: int, name: str, data: bytes = b"") -> int:
        inum = self.alloc_inode(T_FILE)
        for offset in range(0, len(data), BSIZE):
            block = self._append_block(inum)
            self.write_block(block, data[offset : offset + BSIZE])
        self.inodes[inum].size = len(data)
        self.add_dirent(parent, name, inum)
        return inum

    def mknod(self, parent: int, name: str, major: int = 1, minor: int = 0) -> int:
        inum = self.alloc_inode(T_DEV)
        self.inodes[inum].major = major
        self.inodes[inum].minor = minor
        self.add_dirent(parent, name, inum)
        return inum

    def link(self, parent: int, name: str, inum: int):
        """Hard link an existing inode under another name"""
        self.add_dirent(parent, name, inum)
        self.inodes[inum].nlink += 1

    def to_bytes(self) -> bytes:
        self.data[BSIZE : BSIZE + len(self.superblock.pack())] = self.superblock.pack()
        for inum, inode in enumerate(self.inodes):
            if inode.type == T_DIR:
                inode.size = len(self.inode_blocks(inum)) * BSIZE
            offset = self.layout.inode_offset(inum)
            self.data[offset : offset + len(inode.pack())] = inode.pack()
        return bytes(self.data)

    def write(self, image_path: str):
        with open(image_path, "wb") as f:
            f.write(self.to_bytes())


def mkfs(image_path: str, size: int = 1024, ninodes: int = 200) -> ImageBuilder:
    """Write an image holding only the root directory"""
    builder = ImageBuilder(size=size, ninodes=ninodes)
    builder.write(image_path)
    return builder


def main():
    image_path = sys.argv[1] if len(sys.argv) > 1 else "fs.img"
    mkfs(image_path)


if __name__ == "__main__":
    main()
