"""
Recursive directory mirroring shared by the FTP and SFTP transfer classes.

The handle passed in only needs the small surface both ``FTPClient`` and
``SFTPClient`` provide: ``exists``, ``create_directory``, ``list_files``,
``list_directories``, ``get_current_directory`` and
``change_working_directory``.

Every remote call is made with an explicit path built from the directory
being mirrored, so the traversal itself never moves the remote cursor.
``remember_cwd`` still wraps each traversal and puts the cursor back if
anything underneath did move it.
"""
import logging
import os
import posixpath
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, List, Tuple, Union

logger = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]


def walk_local(path: PathLike) -> Tuple[List[Path], List[Path]]:
    """
    Split a local directory into its regular files and subdirectories.

    Both lists keep the order the filesystem enumerates entries in.

    Raises:
        FileNotFoundError: If the path does not exist
        NotADirectoryError: If the path is not a directory
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Local directory not found: {path}")
    if not path.is_dir():
        raise NotADirectoryError(f"Not a directory: {path}")

    files: List[Path] = []
    directories: List[Path] = []
    with os.scandir(path) as entries:
        for entry in entries:
            if entry.is_dir():
                directories.append(Path(entry.path))
            elif entry.is_file():
                files.append(Path(entry.path))
    return files, directories


def remote_join(directory: str, name: str) -> str:
    if not directory or directory == '.':
        return name
    return posixpath.join(directory, name)


@contextmanager
def remember_cwd(handle) -> Iterator[str]:
    """
    Restore the remote working directory on every way out of the block.

    A failed restore is logged and dropped; the exception that ended the
    block, if any, still propagates.
    """
    original = handle.get_current_directory()
    try:
        yield original
    finally:
        try:
            handle.change_working_directory(original)
        except Exception as e:
            logger.warning(f"Could not return to remote directory {original}: {str(e)}")


def upload_directory(handle, local_dir: PathLike, remote_dir: str,
                     upload_file: Callable[[Path, str], None]) -> None:
    """
    Mirror a local directory tree onto ``remote_dir``.

    Args:
        handle: Connected FTP or SFTP client
        local_dir: Local directory to copy
        remote_dir: Remote directory to create or reuse
        upload_file: Called as ``upload_file(local_path, remote_path)`` per file
    """
    files, directories = walk_local(local_dir)
    with remember_cwd(handle):
        _upload_tree(handle, files, directories, remote_dir, upload_file)


def _upload_tree(handle, files: List[Path], directories: List[Path], remote_dir: str,
                 upload_file: Callable[[Path, str], None]) -> None:
    if not handle.exists(remote_dir):
        handle.create_directory(remote_dir)

    for path in files:
        upload_file(path, remote_join(remote_dir, path.name))

    for path in directories:
        sub_files, sub_directories = walk_local(path)
        _upload_tree(handle, sub_files, sub_directories, remote_join(remote_dir, path.name), upload_file)


def download_directory(handle, remote_dir: str, local_dir: PathLike,
                       download_file: Callable[[str, Path], None]) -> None:
    """
    Mirror ``remote_dir`` into a local directory, creating it as needed.

    Args:
        handle: Connected FTP or SFTP client
        remote_dir: Remote directory to copy
        local_dir: Local destination directory
        download_file: Called as ``download_file(remote_path, local_path)`` per file
    """
    with remember_cwd(handle):
        _download_tree(handle, remote_dir, Path(local_dir), download_file)


def _download_tree(handle, remote_dir: str, local_dir: Path,
                   download_file: Callable[[str, Path], None]) -> None:
    local_dir.mkdir(parents=True, exist_ok=True)

    for name in handle.list_files(remote_dir):
        download_file(remote_join(remote_dir, name), local_dir / name)

    for name in handle.list_directories(remote_dir):
        if name in ('.', '..'):
            continue
        _download_tree(handle, remote_join(remote_dir, name), local_dir / name, download_file)
