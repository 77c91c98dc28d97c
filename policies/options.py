from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

Preset = Literal["owner", "public_read", "team_scope", "admin_override"]

PRESETS: tuple[str, ...] = ("owner", "public_read", "team_scope", "admin_override")

DEFAULT_OWNER_COL = "user_id"
DEFAULT_ORG_COL = "org_id"


class PolicyOptions(BaseModel):
    preset: Preset
    owner_col: Optional[str] = Field(default=None, alias="ownerCol")
    org_col: Optional[str] = Field(default=None, alias="orgCol")
    add_owner_col: bool = Field(default=False, alias="addOwnerCol")
    add_org_col: bool = Field(default=False, alias="addOrgCol")

    model_config = ConfigDict(extra="forbid", validate_by_name=True)

    def resolved_owner_col(self) -> Optional[str]:
        if self.preset in {"owner", "public_read"}:
            return self.owner_col or DEFAULT_OWNER_COL
        if self.preset == "team_scope":
            return self.owner_col or None
        return None

    def resolved_org_col(self) -> Optional[str]:
        if self.preset == "team_scope":
            return self.org_col or DEFAULT_ORG_COL
        return None
