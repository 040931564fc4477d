# domain/note.py
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from .project import utc_now


@dataclass
class Note:
    id: str
    title: str
    content: str = ""
    description: Optional[str] = None
    location: Optional[str] = None
    tags: Optional[str] = None
    # Each entry is either a data:image/...;base64 URI or a file:// reference
    images: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
