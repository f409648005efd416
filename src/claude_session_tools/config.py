"""Configuration management for claude-session-tools."""

import json
import logging
from pathlib import Path
from typing import Optional

from .markdown_renderer import RenderOptions
from .parser import DEFAULT_CLAUDE_PROJECTS_DIR

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path.home() / ".config" / "claude-session-tools"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.json"
DEFAULT_OUTPUT_DIR = Path("session-exports")
DEFAULT_MAX_OUTPUT_LENGTH = 10000


class Config:
    """Configuration for claude-session-tools."""

    def __init__(
        self,
        projects_dir: Optional[Path] = None,
        output_dir: Optional[Path] = None,
        max_output_length: int = DEFAULT_MAX_OUTPUT_LENGTH,
        truncate: bool = False,
    ):
        self.projects_dir = projects_dir or DEFAULT_CLAUDE_PROJECTS_DIR
        self.output_dir = output_dir or DEFAULT_OUTPUT_DIR
        self.max_output_length = max_output_length
        self.truncate = truncate

    def render_options(
        self,
        include_thinking: bool = True,
        include_tool_details: bool = True,
        include_system_messages: bool = True,
        max_output_length: Optional[int] = None,
        truncate: Optional[bool] = None,
    ) -> RenderOptions:
        """Build render options, falling back to configured truncation settings."""
        return RenderOptions(
            include_thinking=include_thinking,
            include_tool_details=include_tool_details,
            include_system_messages=include_system_messages,
            max_output_length=max_output_length or self.max_output_length,
            no_truncate=not (self.truncate if truncate is None else truncate),
        )

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "Config":
        """Load configuration from file."""
        path = config_path or DEFAULT_CONFIG_FILE

        if not path.exists():
            return cls()

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return cls(
                projects_dir=Path(data["projects_dir"])
                if data.get("projects_dir")
                else None,
                output_dir=Path(data["output_dir"]) if data.get("output_dir") else None,
                max_output_length=int(
                    data.get("max_output_length", DEFAULT_MAX_OUTPUT_LENGTH)
                ),
                truncate=bool(data.get("truncate", False)),
            )
        except (json.JSONDecodeError, KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning("Ignoring invalid config file %s: %s", path, e)
            return cls()

    def save(self, config_path: Optional[Path] = None):
        """Save configuration to file."""
        path = config_path or DEFAULT_CONFIG_FILE
        path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "projects_dir": str(self.projects_dir),
            "output_dir": str(self.output_dir),
            "max_output_length": self.max_output_length,
            "truncate": self.truncate,
        }

        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
