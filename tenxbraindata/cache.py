import hashlib
import os
import shutil
from os import PathLike
from pathlib import Path
from typing import Dict, Optional, Union

from lamin_utils import logger
from tqdm import tqdm
from upath import UPath

from .config import DATASETS, RESULTS_FOLDER, Resource
from .errors import DownloadError, InvalidArgument

BUFFER_SIZE = 8 * 1024 * 1024


def md5sum(path: Union[str, PathLike]) -> str:
    digest = hashlib.md5()
    with open(path, "rb") as f:
        for buf in iter(lambda: f.read(BUFFER_SIZE), b""):
            digest.update(buf)
    return digest.hexdigest()


def _is_file_name(name: str) -> bool:
    return bool(name) and os.sep not in name and not name.startswith(".")


class ObjectCache:
    """
    Local copies of remote files, fetched on first use.

    Files are looked up by logical name in `resources` and stored under
    `cache_dir/<name>/<filename>`. The source can be anything `UPath`
    understands: an http(s) URL, a cloud bucket, or a local path. Files
    computed from them go to `cache_dir/results/`, see `store`.

    Args:
        cache_dir (str | PathLike): where the files are stored.
        resources (dict[str, Resource], optional): the known files. Defaults to DATASETS.
    """

    def __init__(
        self,
        cache_dir: Union[str, PathLike],
        resources: Optional[Dict[str, Resource]] = None,
    ):
        self.cache_dir = Path(cache_dir).expanduser()
        self.resources = dict(DATASETS if resources is None else resources)
        if RESULTS_FOLDER in self.resources:
            raise InvalidArgument(f"{RESULTS_FOLDER!r} is reserved for computed results")

    def _resource(self, name: str) -> Resource:
        if name not in self.resources:
            raise InvalidArgument(
                f"unknown resource {name}, available: {sorted(self.resources)}"
            )
        return self.resources[name]

    def local_path(self, name: str) -> Path:
        return self.cache_dir / name / self._resource(name).filename

    def is_cached(self, name: str) -> bool:
        return self.local_path(name).is_file()

    def resolve(self, name: str) -> Path:
        """
        Returns the local path of resource `name`, downloading it if it is not there yet.

        Raises:
            InvalidArgument: if `name` is not a known resource.
            DownloadError: if the source cannot be read or fails its checksum.
                No file is left behind in that case.
        """
        path = self.local_path(name)
        if path.is_file():
            logger.info(f"using cached {name} at {path}")
            return path
        self._download(self._resource(name), path)
        return path

    @property
    def results_dir(self) -> Path:
        return self.cache_dir / RESULTS_FOLDER

    def store(self, name: str) -> Path:
        """
        A writable path for the computed file `name`, in the results folder of the cache.

        Downloaded resources live in their own folders, so a stored file never
        shadows one of them.
        """
        if not _is_file_name(name):
            raise InvalidArgument(f"invalid file name: {name!r}")
        self.results_dir.mkdir(parents=True, exist_ok=True)
        return self.results_dir / name

    def _download(self, resource: Resource, path: Path):
        logger.important(f"downloading {resource.name} from {resource.url}")
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".part")
        done = False
        try:
            try:
                source = UPath(resource.url)
                with source.open("rb") as fin, open(tmp, "wb") as fout, tqdm(
                    unit="B", unit_scale=True, desc=resource.filename
                ) as pbar:
                    for buf in iter(lambda: fin.read(BUFFER_SIZE), b""):
                        fout.write(buf)
                        pbar.update(len(buf))
            except Exception as e:
                raise DownloadError(f"could not download {resource.url}") from e
            if resource.md5 is not None:
                found = md5sum(tmp)
                if found != resource.md5:
                    raise DownloadError(
                        f"{resource.url} is corrupted: md5 {found}, expected {resource.md5}"
                    )
            os.replace(tmp, path)
            done = True
        finally:
            # also on KeyboardInterrupt
            if not done:
                tmp.unlink(missing_ok=True)
        logger.success(f"stored {resource.name} at {path}")

    def remove(self, name: str):
        """Deletes the downloaded resource `name` and the stored file `name`, if present."""
        if name in self.resources:
            folder = self.cache_dir / name
            if folder.is_dir():
                shutil.rmtree(folder)
        if _is_file_name(name):
            stored = self.results_dir / name
            if stored.is_file():
                stored.unlink()
