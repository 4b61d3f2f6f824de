from dataclasses import dataclass
from enum import Enum


class PrincipalType(str, Enum):
    ADMIN = "admin"
    SCAN_ENGINE = "scan_engine"


ADMIN_SCOPES = {"links:read", "links:moderate"}
ADMIN_READER_SCOPES = {"links:read"}
SCAN_ENGINE_SCOPES = {"scans:write"}


@dataclass(slots=True)
class Principal:
    principal_type: PrincipalType
    subject: str
    scopes: set[str]

    def require_scopes(self, required: set[str]) -> None:
        missing = required - self.scopes
        if missing:
            raise PermissionError(f"missing required scopes: {sorted(missing)}")
