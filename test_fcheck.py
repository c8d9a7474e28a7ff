#!/usr/bin/env python3
"""
Command line tests: exit codes and the single diagnostic line
"""

import io
import os
from contextlib import redirect_stderr, redirect_stdout

import fcheck
from fs import ROOTINO
from mkfs import mkfs
from test_fsck import TestCase, TestRunner, console


def run_fcheck(*argv):
    """Run the command line entry point, returning (exit code, stdout, stderr)"""
    out, err = io.StringIO(), io.StringIO()
    with redirect_stdout(out), redirect_stderr(err):
        code = fcheck.main(list(argv))
    return code, out.getvalue(), err.getvalue()


class TestCommandLine(TestCase):

    def test_no_arguments(self):
        code, out, err = run_fcheck()
        self.assertEqual(code, 1)
        self.assertEqual(out, "")
        self.assertEqual(err, "Usage: fcheck <file_system_image>\n")

    def test_flags_without_image(self):
        code, _, err = run_fcheck("--verbose")
        self.assertEqual(code, 1)
        self.assertEqual(err, "Usage: fcheck <file_system_image>\n")

    def test_missing_image(self):
        code, _, err = run_fcheck("no_such_image.img")
        self.assertEqual(code, 1)
        self.assertEqual(err, "ERROR: image not found.\n")

    def test_clean_image_is_silent(self):
        mkfs(self.image_path)
        self.assertEqual(run_fcheck(self.image_path), (0, "", ""))

    def test_bad_inode(self):
        f = self.builder.create_file(ROOTINO, "f")
        self.builder.inode(f).type = 5
        self.builder.write(self.image_path)

        code, out, err = run_fcheck(self.image_path)
        self.assertEqual(code, 1)
        self.assertEqual(out, "")
        self.assertEqual(err, "ERROR: bad inode.\n")

    def test_bitmap_overclaim_message(self):
        self.builder.set_bit(self.builder.superblock.size - 1, True)
        self.builder.write(self.image_path)

        code, _, err = run_fcheck(self.image_path)
        self.assertEqual(code, 1)
        self.assertEqual(err, "ERROR: bitmap marks block in use but it is not in use.\n")

    def test_duplicate_directory_message(self):
        a = self.builder.mkdir(ROOTINO, "a")
        other = self.builder.mkdir(ROOTINO, "b")
        self.builder.add_dirent(other, "alias", a)
        self.builder.write(self.image_path)

        code, _, err = run_fcheck(self.image_path)
        self.assertEqual(code, 1)
        self.assertEqual(err, "ERROR: directory appears more than once in file system.\n")

    def test_repeated_runs_agree(self):
        f = self.builder.create_file(ROOTINO, "f")
        self.builder.inode(f).nlink = 2
        self.builder.write(self.image_path)

        first = run_fcheck(self.image_path)
        second = run_fcheck(self.image_path)
        self.assertEqual(first, second)
        self.assertEqual(first, (1, "", "ERROR: bad reference count for file.\n"))

    def test_only_first_argument_is_checked(self):
        mkfs(self.image_path)
        code, _, _ = run_fcheck(self.image_path, "no_such_image.img")
        self.assertEqual(code, 0)

    def test_verbose_logs_progress(self):
        mkfs(self.image_path)
        code, out, err = run_fcheck("-v", self.image_path)
        self.assertEqual(code, 0)
        self.assertEqual(out, "")
        self.assertTrue("checking bitmap" in err)

    def test_verbose_path_with_brackets(self):
        # Paths must reach the console verbatim, never as markup
        bracket_dir = "["
        image_path = os.path.join(bracket_dir, "]x.img")
        os.makedirs(bracket_dir, exist_ok=True)
        try:
            mkfs(image_path)
            code, _, err = run_fcheck("-v", image_path)
            self.assertEqual(code, 0)
            self.assertTrue(f"{image_path}: clean" in err)
        finally:
            if os.path.exists(image_path):
                os.remove(image_path)
            os.rmdir(bracket_dir)

    def test_verbose_failure_ends_with_diagnostic(self):
        f = self.builder.create_file(ROOTINO, "f")
        self.builder.inode(f).type = 5
        self.builder.write(self.image_path)

        code, _, err = run_fcheck("--verbose", self.image_path)
        self.assertEqual(code, 1)
        self.assertTrue("inode 2" in err)
        self.assertTrue(err.endswith("ERROR: bad inode.\n"))


if __name__ == "__main__":
    console.print("[bold white on blue]fcheck Command Line Tests[/bold white on blue]\n")

    runner = TestRunner()
    runner.run(TestCommandLine)

    raise SystemExit(0 if runner.summary() else 1)
