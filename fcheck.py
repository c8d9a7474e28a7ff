import sys
from typing import List, Optional

from errors import FsckError, UsageError
from fsck import check_image, console


def report(error: FsckError, verbose: bool = False):
    if verbose and error.context:
        console.log(f"{type(error).__name__}: {error.context}")
    console.print(f"ERROR: {error.message}", soft_wrap=True)


def main(argv: Optional[List[str]] = None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)

    verbose = False
    for flag in ("-v", "--verbose"):
        while flag in args:
            args.remove(flag)
            verbose = True

    try:
        if not args:
            raise UsageError()
        image_path = args[0]
        check_image(image_path, verbose=verbose)
    except UsageError as e:
        console.print(e.message, soft_wrap=True)
        return 1
    except FsckError as e:
        report(e, verbose)
        return 1

    if verbose:
        console.log(f"{image_path}: clean")
    return 0


if __name__ == "__main__":
    sys.exit(main())
