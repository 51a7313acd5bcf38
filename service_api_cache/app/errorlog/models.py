"""
Error log data models.
"""

import json
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass
class ErrorRecord:
    """One logged upstream or cache error.

    ``context_data`` holds the JSON encoded context mapping and
    ``response_preview`` the first characters of the upstream body.
    """
    api_client: str
    error_type: str
    log_level: str
    error_message: Optional[str] = None
    api_message: Optional[str] = None
    response_preview: Optional[str] = None
    context_data: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def context(self) -> Dict[str, Any]:
        return json.loads(self.context_data) if self.context_data else {}

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat() if self.created_at else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ErrorRecord":
        values = dict(data)
        if values.get("created_at"):
            values["created_at"] = datetime.fromisoformat(values["created_at"])
        return cls(**values)
