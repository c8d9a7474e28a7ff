import mmap
import struct
from typing import Iterable, Iterator, List, Tuple, Union

from rich.console import Console

from errors import (
    BadDirectAddress,
    BadIndirectAddress,
    BadInodeType,
    BadLinkCount,
    BitmapOverclaim,
    BitmapUnderclaim,
    CorruptSuperblock,
    DanglingReference,
    DuplicateDirectAddress,
    DuplicateDirectory,
    DuplicateIndirectAddress,
    ImageIoError,
    MalformedDirectory,
    MissingRoot,
    UnreferencedInode,
)
from fs import (
    BSIZE,
    DINODE_SIZE,
    DIRENT_SIZE,
    DIRENTS_PER_BLOCK,
    NINDIRECT,
    ROOTINO,
    SUPERBLOCK_SIZE,
    T_DIR,
    T_FILE,
    VALID_TYPES,
    Dinode,
    Dirent,
    Layout,
    Superblock,
    bit_is_set,
)

# Diagnostics are matched byte for byte, so no markup or highlighting
console = Console(stderr=True, markup=False, highlight=False, emoji=False)


class Image:
    """Read-only, byte addressable view of a filesystem image"""

    def __init__(self, data: Union[bytes, mmap.mmap], image_file=None):
        self.data = data
        self.image_file = image_file

    @classmethod
    def open(cls, image_path: str) -> "Image":
        """Map an image file for reading"""
        try:
            image_file = open(image_path, "rb")
        except FileNotFoundError as e:
            raise ImageIoError("image not found.") from e
        except OSError as e:
            raise ImageIoError("image could not be mapped for reading.") from e

        try:
            data = mmap.mmap(image_file.fileno(), 0, access=mmap.ACCESS_READ)
        except (OSError, ValueError) as e:
            # ValueError: mmap refuses empty files
            image_file.close()
            raise ImageIoError("image could not be mapped for reading.") from e

        return cls(data, image_file)

    @classmethod
    def from_bytes(cls, data: bytes) -> "Image":
        return cls(bytes(data))

    def __len__(self) -> int:
        return len(self.data)

    def __enter__(self) -> "Image":
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

    def close(self):
        if isinstance(self.data, mmap.mmap):
            self.data.close()
        if self.image_file is not None:
            self.image_file.close()
            self.image_file = None

    def read(self, offset: int, length: int) -> bytes:
        return self.data[offset : offset + length]

    def block(self, blockno: int) -> bytes:
        return self.read(blockno * BSIZE, BSIZE)


class Checker:
    """Runs every consistency check over an image, stopping at the first failure.

    Checks run in a fixed order so a given image always produces the same
    diagnostic:

    1. inode types and address ranges
    2. root directory and ``.``/``..`` entries
    3. bitmap against block usage, both directions
    4. direct and indirect address uniqueness
    5. directory references against allocation and link counts
    """

    def __init__(self, image: Image, verbose: bool = False):
        self.image = image
        self.verbose = verbose

        if len(image) < 2 * BSIZE:
            raise ImageIoError("image too small to hold a superblock.")

        self.superblock = Superblock.unpack(image.read(BSIZE, SUPERBLOCK_SIZE))
        self.layout = Layout.from_superblock(self.superblock)
        self._validate_superblock()

        self.inodes = [self._read_inode(inum) for inum in range(self.layout.ninodes)]
        self.bitmap = image.read(self.layout.bitmap_start * BSIZE, self.layout.num_bitmap_blocks * BSIZE)

    def _log(self, message: str):
        if self.verbose:
            console.log(message)

    def _validate_superblock(self):
        """Reject counts that do not fit the image before sizing anything by them"""
        layout = self.layout
        image_blocks = len(self.image) // BSIZE

        if layout.size == 0 or layout.size > image_blocks:
            raise CorruptSuperblock(block=1)
        if layout.data_start > layout.size:
            raise CorruptSuperblock(block=1)
        if layout.nblocks > layout.size - layout.data_start:
            raise CorruptSuperblock(block=1)

    def _read_inode(self, inum: int) -> Dinode:
        return Dinode.unpack(self.image.read(self.layout.inode_offset(inum), DINODE_SIZE))

    def _allocated_inodes(self) -> Iterator[Tuple[int, Dinode]]:
        for inum, inode in enumerate(self.inodes):
            if inode.allocated:
                yield inum, inode

    def _indirect_entries(self, inode: Dinode) -> List[int]:
        """Addresses stored in the inode's indirect block, zeros included"""
        if inode.indirect == 0:
            return []
        return list(struct.unpack("<%dI" % NINDIRECT, self.image.block(inode.indirect)))

    def _used_addresses(self, inode: Dinode) -> Iterator[int]:
        """Every nonzero block the inode occupies, the indirect block itself included"""
        for address in inode.direct:
            if address != 0:
                yield address
        if inode.indirect != 0:
            yield inode.indirect
            for address in self._indirect_entries(inode):
                if address != 0:
                    yield address

    def _data_blocks(self, inode: Dinode) -> List[int]:
        """Blocks holding the inode's content: direct ones, then those listed in the indirect block"""
        return [address for address in inode.direct + self._indirect_entries(inode) if address != 0]

    def _dirents(self, blockno: int) -> List[Dirent]:
        data = self.image.block(blockno)
        return [Dirent.unpack(data[i * DIRENT_SIZE : (i + 1) * DIRENT_SIZE]) for i in range(DIRENTS_PER_BLOCK)]

    def _dir_entries(self, blocks: Iterable[int]) -> Iterator[Dirent]:
        for blockno in blocks:
            if blockno == 0:
                continue
            yield from self._dirents(blockno)

    def run(self):
        layout = self.layout
        self._log(
            f"size={layout.size} nblocks={layout.nblocks} ninodes={layout.ninodes} "
            f"inodes@{layout.inode_start} bitmap@{layout.bitmap_start} data@{layout.data_start}"
        )

        self._log("checking inode types and addresses")
        self.check_inodes()

        self._log("checking directory structure")
        self.check_root()
        self.check_directories()

        self._log("checking bitmap")
        self.check_bitmap()

        self._log("checking address uniqueness")
        self.check_unique_addresses()

        self._log("checking directory references")
        self.check_references()

    def check_inodes(self):
        """Allocated inodes have a known type and only in-range addresses"""
        layout = self.layout
        for inum, inode in self._allocated_inodes():
            if inode.type not in VALID_TYPES:
                raise BadInodeType(inum=inum)

            for address in inode.direct:
                if address != 0 and not layout.in_data_region(address):
                    raise BadDirectAddress(inum=inum, block=address)

            if inode.indirect == 0:
                continue
            if not layout.in_data_region(inode.indirect):
                raise BadIndirectAddress(inum=inum, block=inode.indirect)
            for address in self._indirect_entries(inode):
                if address != 0 and not layout.in_data_region(address):
                    raise BadIndirectAddress(inum=inum, block=address)

    def check_root(self):
        """Inode 1 is a directory whose first block starts with . and .. pointing at itself"""
        if self.layout.ninodes <= ROOTINO:
            raise MissingRoot(inum=ROOTINO)

        root = self.inodes[ROOTINO]
        if root.type != T_DIR or root.addrs[0] == 0:
            raise MissingRoot(inum=ROOTINO)

        dot, dotdot = self._dirents(root.addrs[0])[:2]
        if dot.name != "." or dot.inum != ROOTINO:
            raise MissingRoot(inum=ROOTINO, block=root.addrs[0])
        if dotdot.name != ".." or dotdot.inum != ROOTINO:
            raise MissingRoot(inum=ROOTINO, block=root.addrs[0])

    def check_directories(self):
        """Every directory has . naming itself and .. naming its parent"""
        for inum, inode in self._allocated_inodes():
            if inode.type != T_DIR:
                continue

            found_dot = found_dotdot = False
            # Only direct blocks; . and .. always live in the first one
            for dirent in self._dir_entries(inode.direct):
                if dirent.name == ".":
                    found_dot = True
                    if dirent.inum != inum:
                        raise MalformedDirectory(inum=inum)
                elif dirent.name == "..":
                    found_dotdot = True
                    if inum == ROOTINO and dirent.inum != inum:
                        raise MissingRoot(inum=inum)
                    if inum != ROOTINO and dirent.inum == inum:
                        raise MissingRoot(inum=inum)
                if found_dot and found_dotdot:
                    break

            if not (found_dot and found_dotdot):
                raise MalformedDirectory(inum=inum)

    def check_bitmap(self):
        self.check_bitmap_marks_used()
        self.check_bitmap_marks_unused()

    def check_bitmap_marks_used(self):
        """Every block an inode uses is marked in the bitmap"""
        for inum, inode in self._allocated_inodes():
            for address in self._used_addresses(inode):
                if not bit_is_set(self.bitmap, address):
                    raise BitmapUnderclaim(inum=inum, block=address)

    def check_bitmap_marks_unused(self):
        """No data block is marked in the bitmap unless some inode uses it"""
        data_start = self.layout.data_start
        used = [False] * (self.layout.size - data_start)

        for _, inode in self._allocated_inodes():
            for address in self._used_addresses(inode):
                used[address - data_start] = True

        for index, in_use in enumerate(used):
            if not in_use and bit_is_set(self.bitmap, data_start + index):
                raise BitmapOverclaim(block=data_start + index)

    def check_unique_addresses(self):
        """No data block is claimed twice as a direct address, or twice as an indirect one.

        The two classes are counted separately: a block listed directly by one
        inode and inside the indirect block of another is not reported.
        """
        data_start = self.layout.data_start
        region = self.layout.size - data_start
        direct_counts = [0] * region
        indirect_counts = [0] * region

        for _, inode in self._allocated_inodes():
            for address in inode.direct:
                if address != 0:
                    direct_counts[address - data_start] += 1
            for address in self._indirect_entries(inode):
                if address != 0:
                    indirect_counts[address - data_start] += 1

        for index in range(region):
            if direct_counts[index] > 1:
                raise DuplicateDirectAddress(block=data_start + index)
            if indirect_counts[index] > 1:
                raise DuplicateIndirectAddress(block=data_start + index)

    def count_references(self) -> List[int]:
        """Count directory entries naming each inode, walking the tree from the root.

        Uses an explicit stack and visits each directory once, so deep or
        cyclic trees cannot exhaust the interpreter's recursion limit.
        """
        ninodes = self.layout.ninodes
        refs = [0] * ninodes
        # Inode 0 is never used and the root has no parent entry
        refs[0] = 1
        refs[ROOTINO] = 1

        stack = [ROOTINO]
        visited = {ROOTINO}
        while stack:
            directory = self.inodes[stack.pop()]
            for dirent in self._dir_entries(self._data_blocks(directory)):
                if dirent.inum == 0 or dirent.name in (".", ".."):
                    continue
                if dirent.inum >= ninodes:
                    raise DanglingReference(inum=dirent.inum)

                refs[dirent.inum] += 1
                if self.inodes[dirent.inum].type == T_DIR and dirent.inum not in visited:
                    visited.add(dirent.inum)
                    stack.append(dirent.inum)

        return refs

    def check_references(self):
        """Allocation state, link counts and directory uniqueness agree with the tree"""
        refs = self.count_references()

        for inum in range(2, self.layout.ninodes):
            inode = self.inodes[inum]
            if inode.allocated and refs[inum] == 0:
                raise UnreferencedInode(inum=inum)
            if refs[inum] > 0 and not inode.allocated:
                raise DanglingReference(inum=inum)
            if inode.type == T_FILE and inode.nlink != refs[inum]:
                raise BadLinkCount(inum=inum)
            if inode.type == T_DIR and refs[inum] > 1:
                raise DuplicateDirectory(inum=inum)


def check_image(image_path: str, verbose: bool = False):
    """Check the image at ``image_path``, raising the first FsckError found"""
    with Image.open(image_path) as image:
        Checker(image, verbose=verbose).run()
