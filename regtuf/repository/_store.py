# Copyright the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""On-disk store of signed metadata files and raw target content"""

import io
import logging
import os
import tempfile
from typing import IO, Optional, Union

from securesystemslib.exceptions import StorageError
from securesystemslib.storage import FilesystemBackend, StorageBackendInterface

from regtuf.api.metadata import Metadata
from regtuf.exceptions import NotFoundError, PersistenceError

logger = logging.getLogger(__name__)


class RepositoryStore:
    """Reads and writes the files of one repository directory::

        <repo_path>/{root,targets,snapshot,timestamp}.json
        <repo_path>/targets/<target name>

    Metadata files are replaced atomically: the new content is written to a
    temporary file in the same directory which is then renamed over the old
    file.

    Args:
        repo_path: Repository directory.
        storage_backend: ``securesystemslib.storage.StorageBackendInterface``
            implementation. Default is ``FilesystemBackend``.
    """

    def __init__(
        self,
        repo_path: str,
        storage_backend: Optional[StorageBackendInterface] = None,
    ):
        self.repo_path = repo_path
        self.targets_path = os.path.join(repo_path, "targets")
        self._storage = storage_backend or FilesystemBackend()

    def create_folders(self) -> None:
        """Create the repository and targets directories if missing.

        Raises:
            PersistenceError: A directory cannot be created.
        """
        for path in (self.repo_path, self.targets_path):
            try:
                self._storage.create_folder(path)
            except StorageError as e:
                raise PersistenceError(f"Cannot create {path}") from e

    def meta_path(self, filename: str) -> str:
        return os.path.join(self.repo_path, filename)

    def target_path(self, name: str) -> str:
        return os.path.join(self.targets_path, *name.split("/"))

    def _atomic_put(self, data: bytes, path: str) -> None:
        fd, temp_path = tempfile.mkstemp(
            prefix=f".{os.path.basename(path)}.", dir=os.path.dirname(path)
        )
        os.close(fd)
        try:
            self._storage.put(io.BytesIO(data), temp_path)
            os.chmod(temp_path, 0o644)
            os.replace(temp_path, path)
        except (StorageError, OSError) as e:
            if os.path.exists(temp_path):
                os.remove(temp_path)
            raise PersistenceError(f"Cannot write {path}") from e

    def save_meta_file(self, filename: str, metadata: Metadata) -> None:
        """Serialize ``metadata`` to indented JSON and write it.

        Raises:
            SerializationError: ``metadata`` cannot be serialized.
            PersistenceError: The file cannot be written.
        """
        path = self.meta_path(filename)
        self._atomic_put(metadata.to_bytes(), path)
        logger.debug("Wrote %s v%d", filename, metadata.signed.version)

    def read_meta_bytes(self, filename: str) -> bytes:
        """Return the raw content of a metadata file.

        Raises:
            NotFoundError: The file does not exist.
            PersistenceError: The file cannot be read.
        """
        path = self.meta_path(filename)
        if not os.path.isfile(path):
            raise NotFoundError(f"No metadata file {filename}")

        try:
            with self._storage.get(path) as file_obj:
                return file_obj.read()
        except StorageError as e:
            raise PersistenceError(f"Cannot read {path}") from e

    def load_meta_file(self, filename: str) -> Optional[Metadata]:
        """Load a metadata file, or return None if it does not exist.

        Raises:
            DeserializationError: The file cannot be parsed.
            PersistenceError: The file cannot be read.
        """
        try:
            data = self.read_meta_bytes(filename)
        except NotFoundError:
            return None

        return Metadata.from_bytes(data)

    def write_target(self, name: str, data: Union[bytes, IO[bytes]]) -> None:
        """Write the content of target ``name`` under the targets directory.

        Raises:
            PersistenceError: The file cannot be written.
        """
        path = self.target_path(name)
        fileobj = io.BytesIO(data) if isinstance(data, bytes) else data
        try:
            self._storage.create_folder(os.path.dirname(path))
            self._storage.put(fileobj, path)
        except StorageError as e:
            raise PersistenceError(f"Cannot write target {name}") from e

    def remove_target(self, name: str) -> bool:
        """Delete the content of target ``name``.

        Returns False if there was nothing to delete.

        Raises:
            PersistenceError: The file exists but cannot be deleted.
        """
        path = self.target_path(name)
        if not os.path.isfile(path):
            return False

        try:
            self._storage.remove(path)
        except StorageError as e:
            raise PersistenceError(f"Cannot remove target {name}") from e
        return True
