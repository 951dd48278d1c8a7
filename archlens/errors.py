from __future__ import annotations


class ArchlensError(Exception):
	"""Base class for fatal analysis failures."""


class CollectionError(ArchlensError):
	"""The project root (or remote source) could not be read."""


class AnalysisError(ArchlensError):
	"""A run was aborted; ``stage`` names the failing pipeline stage."""

	def __init__(self, message: str, stage: str = "analysis") -> None:
		super().__init__(message)
		self.stage = stage
