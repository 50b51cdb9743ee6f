# SPDX-License-Identifier: Apache-2.0

import gzip
import io
import logging
import os
import tarfile

from hflc.fabric.errors import PackageError

_logger = logging.getLogger(__name__)


def zeroTarInfo(tarinfo):
    tarinfo.uid = tarinfo.gid = 500
    tarinfo.uname = tarinfo.gname = ''
    tarinfo.mode = 0o644
    tarinfo.mtime = 0
    tarinfo.pax_headers = {}
    return tarinfo


def _list_files(proj_path):
    files = []
    for dir_path, dir_names, file_names in os.walk(proj_path):
        # walk order depends on the file system
        dir_names.sort()
        for filename in sorted(file_names):
            files.append(os.path.join(dir_path, filename))
    return files


def _tar_path(proj_path, arc_root):
    """Tar the project path into a gzip stream.

    Entries are sorted and their metadata zeroed, so the same tree always
    produces the same bytes.

    :param proj_path: The full path to the code
    :param arc_root: prefix of the entry names inside the archive
    :return: The tar.gz bytes.
    """
    files = _list_files(proj_path)
    if not files:
        raise PackageError(f"No chaincode file found in {proj_path}!")

    tar_stream = io.BytesIO()
    with gzip.GzipFile(fileobj=tar_stream, mode='wb', mtime=0) as gz:
        with tarfile.open(fileobj=gz, mode='w',
                          format=tarfile.GNU_FORMAT) as dist:
            for file_path in files:
                arcname = os.path.join(
                    arc_root, os.path.relpath(file_path, proj_path))
                with open(file_path, mode='rb') as f:
                    tarinfo = dist.gettarinfo(file_path, arcname)
                    tarinfo = zeroTarInfo(tarinfo)
                    dist.addfile(tarinfo, f)

    return tar_stream.getvalue()


def package_chaincode(source_path, cc_path=None):
    """Package a chaincode source directory into a tar.gz archive.

    :param source_path: directory holding the chaincode sources
    :param cc_path: chaincode path recorded inside the archive,
     defaults to the directory name
    :return: The archive bytes
    :raises PackageError: when the directory is missing, is not a
     directory or holds no file
    """
    _logger.debug(f'Packaging chaincode source path={source_path}')

    if not source_path:
        raise PackageError("Missing chaincode source path")

    if not os.path.exists(source_path):
        raise PackageError(f"Chaincode source path {source_path}"
                           f" does not exist")

    if not os.path.isdir(source_path):
        raise PackageError(f"Chaincode source path {source_path}"
                           f" is not a directory")

    if cc_path is None:
        cc_path = os.path.basename(os.path.normpath(source_path))

    arc_root = os.path.join('src', cc_path)
    try:
        return _tar_path(source_path, arc_root)
    except OSError as e:
        raise PackageError(f'Cannot read chaincode source {source_path}:'
                           f' {e}') from e
