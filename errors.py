from typing import Optional


class FsckError(Exception):
    """Base class for every condition that stops a check.

    ``message`` is the one-line diagnostic printed after ``ERROR:``; ``inum``
    and ``block`` locate the violation when it is known.
    """

    message = "file system check failed."

    def __init__(self, message: Optional[str] = None, inum: Optional[int] = None, block: Optional[int] = None):
        if message is not None:
            self.message = message
        self.inum = inum
        self.block = block
        super().__init__(self.message)

    @property
    def context(self) -> str:
        parts = []
        if self.inum is not None:
            parts.append(f"inode {self.inum}")
        if self.block is not None:
            parts.append(f"block {self.block}")
        return ", ".join(parts)


class UsageError(FsckError):
    message = "Usage: fcheck <file_system_image>"


class ImageIoError(FsckError):
    message = "image not found."


class CorruptSuperblock(FsckError):
    message = "superblock is corrupt."


class BadInodeType(FsckError):
    message = "bad inode."


class BadDirectAddress(FsckError):
    message = "bad direct address in inode."


class BadIndirectAddress(FsckError):
    message = "bad indirect address in inode."


class MissingRoot(FsckError):
    message = "root directory does not exist."


class MalformedDirectory(FsckError):
    message = "directory not properly formatted."


class BitmapUnderclaim(FsckError):
    message = "address used by inode but marked free in bitmap."


class BitmapOverclaim(FsckError):
    message = "bitmap marks block in use but it is not in use."


class DuplicateDirectAddress(FsckError):
    message = "direct address used more than once."


class DuplicateIndirectAddress(FsckError):
    message = "indirect address used more than once."


class UnreferencedInode(FsckError):
    message = "inode marked use but not found in a directory."


class DanglingReference(FsckError):
    message = "inode referred to in directory but marked free."


class BadLinkCount(FsckError):
    message = "bad reference count for file."


class DuplicateDirectory(FsckError):
    message = "directory appears more than once in file system."
