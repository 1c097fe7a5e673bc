"""
Per-run working directories.

Every delineation writes its intermediate rasters and vectors into its own
uniquely named directory, so several runs on the same host never touch each
other's files. The workspace is handed to every stage explicitly.
"""

import logging
import shutil
import tempfile
import uuid
from pathlib import Path
from types import TracebackType

logger = logging.getLogger(__name__)


class Workspace:
    """
    A unique directory holding the artifacts of one pipeline run.

    Used as a context manager, the directory is removed when the block raises
    (unless keep_on_error is set) and kept when it completes, because the
    result still refers to the reprojected DEM inside it.
    """

    def __init__(self, root: Path, run_id: str, keep_on_error: bool = False) -> None:
        self.root = Path(root)
        self.run_id = run_id
        self.keep_on_error = keep_on_error

    @classmethod
    def create(
        cls,
        parent: Path | str | None = None,
        run_id: str | None = None,
        keep_on_error: bool = False,
    ) -> "Workspace":
        """
        Create a fresh workspace directory.

        Args:
            parent: Directory to create the workspace in (default: system temp dir)
            run_id: Identifier embedded in the directory name (default: random uuid4)
            keep_on_error: Leave the directory in place when the run fails

        Returns:
            Workspace whose directory exists and is empty
        """
        run_id = run_id or uuid.uuid4().hex
        if parent is not None:
            parent = Path(parent).expanduser()
            parent.mkdir(parents=True, exist_ok=True)

        root = Path(tempfile.mkdtemp(prefix=f"mfdshed-{run_id}-", dir=parent))
        logger.debug(f"Created workspace {root}")
        return cls(root=root, run_id=run_id, keep_on_error=keep_on_error)

    def path(self, name: str) -> Path:
        """Path of a named artifact inside the workspace."""
        if Path(name).is_absolute() or ".." in Path(name).parts:
            raise ValueError(f"Artifact name must be relative to the workspace: {name}")
        return self.root / name

    @property
    def exists(self) -> bool:
        return self.root.is_dir()

    def cleanup(self) -> None:
        """Remove the workspace directory and everything in it."""
        if self.root.exists():
            shutil.rmtree(self.root, ignore_errors=True)
            logger.debug(f"Removed workspace {self.root}")

    def __enter__(self) -> "Workspace":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if exc_type is not None:
            if self.keep_on_error:
                logger.warning(f"Run failed, intermediate files kept in {self.root}")
            else:
                self.cleanup()

    def __repr__(self) -> str:
        return f"Workspace(root={str(self.root)!r}, run_id={self.run_id!r})"
