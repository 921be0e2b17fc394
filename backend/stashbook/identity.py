# Overview: Caller identity as supplied by the external identity/role provider.

from __future__ import annotations

from dataclasses import dataclass


# Role levels run 1 (most privileged) .. 5
MIN_ROLE_LEVEL = 1
MAX_ROLE_LEVEL = 5


@dataclass(frozen=True)
class Actor:
    """
    Who performed an action. This service never authenticates; it records
    whatever identity the upstream provider hands it.
    """
    uid: str
    display_name: str | None = None
    role_level: int = MAX_ROLE_LEVEL
    folder_number: str | None = None

    def to_dict(self) -> dict:
        return {
            "uid": self.uid,
            "name": self.display_name,
            "role_level": self.role_level,
        }
