from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional


def setup_logging(level: str = "INFO", log_path: Optional[Path] = None) -> logging.Logger:
	"""Configure the ``archlens`` logger: stderr always, plus ``log_path`` when given."""
	logger = logging.getLogger("archlens")
	logger.setLevel(getattr(logging, level.upper(), logging.INFO))
	for handler in list(logger.handlers):
		handler.close()
		logger.removeHandler(handler)

	fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")
	sh = logging.StreamHandler()
	sh.setFormatter(fmt)
	logger.addHandler(sh)

	if log_path:
		log_path.parent.mkdir(parents=True, exist_ok=True)
		fh = logging.FileHandler(str(log_path), encoding="utf-8")
		fh.setFormatter(fmt)
		logger.addHandler(fh)
	return logger
