"""Tag detail data model."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class TagDetail:
    """Per-tag metadata shown by list-tags."""
    name: str
    digest: str = ""
    size: int = 0  # always 0 for index tags
    platforms: List[str] = field(default_factory=list)
    created: Optional[datetime] = None
    is_index: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON output."""
        return {
            "Tag": self.name,
            "Digest": self.digest,
            "Platforms": list(self.platforms),
            "Size": "Index" if self.is_index else self.size,
            "Created": self.created.isoformat() if self.created else None,
            "IsIndex": self.is_index
        }
