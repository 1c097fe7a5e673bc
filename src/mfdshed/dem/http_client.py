"""
HTTP download client for CDED elevation tiles.

Tiles are fetched with httpx, streamed to disk with a tqdm progress bar,
retried on transient errors and cached so a tile is only downloaded once.
"""

import logging
import time
import zipfile
from collections.abc import Callable
from pathlib import Path

import httpx
from tqdm import tqdm

logger = logging.getLogger(__name__)

# Download configuration
CHUNK_SIZE = 8192  # 8KB chunks
MAX_RETRIES = 3
RETRY_DELAY = 2.0  # seconds
TIMEOUT = 600.0  # seconds


class TileNotFoundError(Exception):
    """The server has no tile at this URL (HTTP 404)."""


def download_file(
    url: str,
    dest_path: Path,
    overwrite: bool = False,
    progress_callback: Callable[[int, int], None] | None = None,
) -> Path:
    """
    Download a file, retrying transient failures.

    Args:
        url: URL to download from
        dest_path: Where to save the file
        overwrite: Re-download even if the file exists
        progress_callback: Optional callback(bytes_downloaded, total_bytes)

    Returns:
        Path to the downloaded file

    Raises:
        TileNotFoundError: If the server answers 404 (not retried)
        httpx.HTTPError: If every attempt failed
    """
    dest_path = Path(dest_path)
    dest_path.parent.mkdir(parents=True, exist_ok=True)

    if dest_path.exists() and not overwrite:
        logger.debug(f"File already exists: {dest_path}")
        return dest_path

    logger.info(f"Downloading {url}")

    for attempt in range(1, MAX_RETRIES + 1):
        try:
            _stream_to_file(url, dest_path, progress_callback)
            logger.info(f"Successfully downloaded {dest_path.name}")
            return dest_path
        except httpx.HTTPStatusError as e:
            _remove_partial(dest_path)
            if e.response.status_code == 404:
                raise TileNotFoundError(f"No file at {url}") from e
            if attempt == MAX_RETRIES:
                logger.error(f"Download failed after {MAX_RETRIES} attempts: {e}")
                raise
            logger.warning(f"Download attempt {attempt} failed: {e}. Retrying in {RETRY_DELAY}s...")
            time.sleep(RETRY_DELAY)
        except httpx.HTTPError as e:
            _remove_partial(dest_path)
            if attempt == MAX_RETRIES:
                logger.error(f"Download failed after {MAX_RETRIES} attempts: {e}")
                raise
            logger.warning(f"Download attempt {attempt} failed: {e}. Retrying in {RETRY_DELAY}s...")
            time.sleep(RETRY_DELAY)


def extract_rasters(archive: Path, dest_dir: Path, suffix: str = ".dem") -> list[Path]:
    """
    Extract every member with the given suffix from a zip archive.

    Already-extracted members are not written again.

    Raises:
        zipfile.BadZipFile: If the archive is corrupt
    """
    dest_dir.mkdir(parents=True, exist_ok=True)
    extracted: list[Path] = []

    with zipfile.ZipFile(archive) as zf:
        for member in zf.namelist():
            if not member.lower().endswith(suffix):
                continue
            target = dest_dir / Path(member).name
            if not target.exists():
                with zf.open(member) as src, open(target, "wb") as dst:
                    dst.write(src.read())
            extracted.append(target)

    return extracted


def _partial_path(dest_path: Path) -> Path:
    return dest_path.with_name(dest_path.name + ".part")


def _remove_partial(dest_path: Path) -> None:
    for path in (dest_path, _partial_path(dest_path)):
        if path.exists():
            path.unlink()


def _stream_to_file(
    url: str,
    dest_path: Path,
    progress_callback: Callable[[int, int], None] | None = None,
) -> None:
    with httpx.Client(timeout=TIMEOUT, follow_redirects=True) as client, client.stream("GET", url) as response:
        response.raise_for_status()

        total_size = int(response.headers.get("content-length", 0))

        if progress_callback is None and total_size > 0:
            progress_bar = tqdm(total=total_size, unit="B", unit_scale=True, desc=dest_path.name)
        else:
            progress_bar = None

        bytes_downloaded = 0
        # Only complete downloads appear under dest_path
        partial = _partial_path(dest_path)

        try:
            with open(partial, "wb") as f:
                for chunk in response.iter_bytes(chunk_size=CHUNK_SIZE):
                    f.write(chunk)
                    bytes_downloaded += len(chunk)

                    if progress_callback:
                        progress_callback(bytes_downloaded, total_size)
                    elif progress_bar:
                        progress_bar.update(len(chunk))
            partial.replace(dest_path)
        except BaseException:
            partial.unlink(missing_ok=True)
            raise
        finally:
            if progress_bar:
                progress_bar.close()
