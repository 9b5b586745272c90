"""
Artifact store - writes files produced by code execution to the output directory.
"""

import re
from pathlib import Path
from typing import Union

from loguru import logger

from agnt.core.errors import ArtifactWriteError

_UNSAFE_CHARS = re.compile(r"[^\w.\-]", re.UNICODE)


class ArtifactStore:
    """
    Saves named bytes under a single directory.

    Existing files are never overwritten; a numeric suffix is added instead
    (``plot.png``, ``plot_1.png``, ``plot_2.png`` ...).
    """

    def __init__(self, output_dir: Union[str, Path]):
        """
        Args:
            output_dir: Directory for saved files, created on first write
        """
        self.output_dir = Path(output_dir)

    @staticmethod
    def sanitize_name(name: str) -> str:
        """Strip directory parts and replace anything but alphanumerics, '.', '-' and '_'."""
        base = Path(name.replace("\\", "/")).name
        if base in ("", ".", ".."):
            return "unnamed_file"
        cleaned = _UNSAFE_CHARS.sub("_", base)
        return cleaned.lstrip(".") or "unnamed_file"

    def available_path(self, filename: str) -> Path:
        """First path under the output directory not already taken."""
        candidate = self.output_dir / filename
        if not candidate.exists():
            return candidate
        stem, suffix = candidate.stem, candidate.suffix
        counter = 1
        while True:
            candidate = self.output_dir / f"{stem}_{counter}{suffix}"
            if not candidate.exists():
                return candidate
            counter += 1

    def save(self, filename: str, content: bytes) -> Path:
        """
        Write ``content`` under a sanitized, collision-free name.

        Returns:
            Path of the written file

        Raises:
            ArtifactWriteError: the directory or file could not be written
        """
        safe_name = self.sanitize_name(filename)
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Failed to create output directory {self.output_dir}: {e}")
            raise ArtifactWriteError(f"could not create {self.output_dir}: {e}") from e

        while True:
            path = self.available_path(safe_name)
            try:
                with open(path, "xb") as f:
                    f.write(content)
            except FileExistsError:
                # Taken between the check and the open
                continue
            except OSError as e:
                logger.error(f"Failed to write {safe_name} to {self.output_dir}: {e}")
                raise ArtifactWriteError(f"could not write {safe_name}: {e}") from e
            break

        logger.info(f"Saved file: {path} ({len(content)} bytes)")
        return path
