"""Fetch a remote git repository into a throwaway local workspace."""

from __future__ import annotations

import logging
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Optional

from .errors import CollectionError


logger = logging.getLogger(__name__)


class RemoteWorkspace:
	"""Shallow-clones ``url`` on enter and removes the clone on exit.

	Usage::

		with RemoteWorkspace("https://github.com/org/repo") as root:
			collect_sources(str(root))
	"""

	def __init__(self, url: str, timeout: int = 300, base_dir: Optional[str] = None) -> None:
		self.url = url
		self.timeout = timeout
		self.base_dir = base_dir
		self.temp_dir: Optional[Path] = None

	def __enter__(self) -> Path:
		return self.clone()

	def __exit__(self, exc_type, exc_val, exc_tb) -> None:
		self.cleanup()

	def cleanup(self) -> None:
		if self.temp_dir and self.temp_dir.exists():
			shutil.rmtree(self.temp_dir, ignore_errors=True)
			logger.info("Cleaned up workspace %s", self.temp_dir)
		self.temp_dir = None

	def clone(self) -> Path:
		self.temp_dir = Path(tempfile.mkdtemp(prefix="archlens_", dir=self.base_dir))
		logger.info("Cloning %s into %s", self.url, self.temp_dir)
		try:
			result = subprocess.run(
				["git", "clone", "--depth", "1", self.url, str(self.temp_dir)],
				capture_output=True,
				text=True,
				timeout=self.timeout,
			)
		except subprocess.TimeoutExpired as e:
			self.cleanup()
			raise CollectionError(f"Cloning {self.url} timed out after {self.timeout}s") from e
		except FileNotFoundError as e:
			self.cleanup()
			raise CollectionError("git executable not found") from e

		if result.returncode != 0:
			self.cleanup()
			logger.error("git clone failed: %s", result.stderr.strip())
			raise CollectionError(f"Failed to clone {self.url}: {result.stderr.strip()}")
		return self.temp_dir
