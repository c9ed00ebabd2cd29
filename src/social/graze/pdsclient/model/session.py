"""AT Protocol session model.

Represents the credential pair and account identity returned by the
`com.atproto.server.createSession` and `com.atproto.server.refreshSession` endpoints.
"""

from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

AccountStatus = Literal["takendown", "suspended", "deactivated"]


class Session(BaseModel):
    """Authenticated session for a single account.

    Field names follow Python conventions while the wire names (`accessJwt`,
    `refreshJwt`, ...) are accepted as aliases. Dump with `by_alias=True` to get the
    shape the PDS returned, which is what callers usually persist.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    handle: str
    did: str
    access_token: str = Field(alias="accessJwt")
    refresh_token: str = Field(alias="refreshJwt")

    # Older PDS implementations omit `active` entirely.
    active: bool = True
    status: Optional[AccountStatus] = None

    email: Optional[str] = None
    email_confirmed: Optional[bool] = Field(default=None, alias="emailConfirmed")
    email_auth_factor: Optional[bool] = Field(default=None, alias="emailAuthFactor")
    did_doc: Optional[Dict[str, Any]] = Field(default=None, alias="didDoc")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)

    def __repr__(self) -> str:
        return f"Session(handle={self.handle!r}, did={self.did!r}, active={self.active})"

    __str__ = __repr__
