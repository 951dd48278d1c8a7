from __future__ import annotations

from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_IGNORE: List[str] = [
	".git",
	"target",
	"node_modules",
	"vendor",
	"dist",
	"build",
	".idea",
	".vscode",
]

# Attribute names (or dotted suffixes) that register a function with a
# framework or the linker, so it is reachable without a visible call.
DEFAULT_ENTRY_ATTRIBUTES: List[str] = [
	"no_mangle",
	"main",
	"wasm_bindgen",
	"component",
	"server",
	"handler",
	"get",
	"post",
	"put",
	"patch",
	"delete",
	"route",
	"proc_macro",
	"proc_macro_derive",
	"proc_macro_attribute",
	"bench",
]


class Settings(BaseSettings):
	"""Analysis settings, read from ``ARCHLENS_*`` environment variables."""

	model_config = SettingsConfigDict(
		env_prefix="ARCHLENS_",
		env_file=".env",
		env_file_encoding="utf-8",
		case_sensitive=False,
		extra="ignore",
	)

	database_url: str = "sqlite:///archlens.db"
	log_level: str = "INFO"
	log_file: Optional[str] = None
	max_workers: int = Field(default=8, ge=1)

	# Collection
	extensions: List[str] = Field(default_factory=lambda: [".rs"])
	ignore_patterns: List[str] = Field(default_factory=lambda: list(DEFAULT_IGNORE))
	clone_timeout: int = 300

	# Architecture note thresholds
	max_file_lines: int = 500
	max_complexity: int = 10
	max_fan_in: int = 8

	# Dead-code exemptions
	exempt_public: bool = True
	entry_point_names: List[str] = Field(default_factory=lambda: ["main"])
	entry_point_attributes: List[str] = Field(default_factory=lambda: list(DEFAULT_ENTRY_ATTRIBUTES))


@lru_cache
def get_settings() -> Settings:
	return Settings()
