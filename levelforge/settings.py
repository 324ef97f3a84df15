"""
Export configuration.

Settings are plain dataclasses so they can be built in code, or loaded from
and saved to JSON alongside model descriptors.
"""

from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
import json


class AnimationChoice(str, Enum):
    """Which animation clips an export writes."""
    NONE = "none"
    ALL_SEPARATE = "separate"
    ALL_SEQUENTIAL = "sequential"


@dataclass
class ExportSettings:
    """
    Options for scene export.

    Fields:
    - animation_choice: Clips to write for skinned models
    - animation_index: Write only this clip (overrides animation_choice)
    - split_files: With ALL_SEPARATE, write one file per clip named
      ``<base>_<index>.dae``
    - author / authoring_tool: Asset contributor metadata
    - up_axis: Asset up axis
    - created: Fixed ISO 8601 timestamp for reproducible output; the current
      UTC time is used when unset
    """
    animation_choice: AnimationChoice = AnimationChoice.ALL_SEPARATE
    animation_index: Optional[int] = None
    split_files: bool = True
    author: str = "levelforge user"
    authoring_tool: str = "levelforge"
    up_axis: str = "Z_UP"
    created: Optional[str] = None

    def __post_init__(self):
        self.animation_choice = AnimationChoice(self.animation_choice)

    def timestamp(self) -> str:
        """Creation timestamp written into the asset metadata."""
        if self.created:
            return self.created
        return datetime.now(timezone.utc).replace(microsecond=0).isoformat()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        d = asdict(self)
        d["animation_choice"] = self.animation_choice.value
        return {k: v for k, v in d.items() if v is not None}

    def to_json(self, indent: int = 2) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ExportSettings":
        """Create ExportSettings from dictionary."""
        return cls(
            animation_choice=AnimationChoice(d.get("animation_choice", AnimationChoice.ALL_SEPARATE.value)),
            animation_index=d.get("animation_index"),
            split_files=d.get("split_files", True),
            author=d.get("author", "levelforge user"),
            authoring_tool=d.get("authoring_tool", "levelforge"),
            up_axis=d.get("up_axis", "Z_UP"),
            created=d.get("created"),
        )

    @classmethod
    def from_json(cls, json_str: str) -> "ExportSettings":
        """Create ExportSettings from JSON string."""
        return cls.from_dict(json.loads(json_str))

    def validate(self) -> List[str]:
        """
        Check the settings for consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if self.animation_index is not None and self.animation_index < 0:
            errors.append(f"Invalid animation index: {self.animation_index}")

        if self.up_axis not in ["X_UP", "Y_UP", "Z_UP"]:
            errors.append(f"Invalid up axis: {self.up_axis}")

        return errors
