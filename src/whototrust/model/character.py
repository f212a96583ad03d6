"""ESI payload models and the resolved identity record.

Field names follow the ESI JSON documents so responses validate directly with
``model_validate_json``.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

from whototrust.model.credential import Credential


class User(BaseModel):
    """Character identity returned by the SSO verify endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    character_id: int = Field(alias="CharacterID")
    character_name: str = Field(alias="CharacterName")


class CharacterResponse(BaseModel):
    """Public character information from ``/characters/{id}/``."""

    alliance_id: Optional[int] = None
    birthday: Optional[datetime] = None
    bloodline_id: Optional[int] = None
    corporation_id: int
    description: Optional[str] = None
    faction_id: Optional[int] = None
    gender: Optional[str] = None
    name: str
    race_id: Optional[int] = None
    security_status: Optional[float] = None
    title: Optional[str] = None


class CorporationInfo(BaseModel):
    """Public corporation information from ``/corporations/{id}/``."""

    alliance_id: Optional[int] = None
    ceo_id: int
    creator_id: int
    date_founded: Optional[datetime] = None
    description: Optional[str] = None
    faction_id: Optional[int] = None
    home_station_id: Optional[int] = None
    member_count: int
    name: str
    shares: Optional[int] = None
    tax_rate: float
    ticker: str
    url: Optional[str] = None
    war_eligible: Optional[bool] = None


class Alliance(BaseModel):
    """Public alliance information from ``/alliances/{id}/``."""

    creator_corporation_id: int
    creator_id: int
    date_founded: datetime
    executor_corporation_id: Optional[int] = None
    faction_id: Optional[int] = None
    name: str
    ticker: str


class CharacterPortrait(BaseModel):
    px64x64: Optional[str] = None
    px128x128: Optional[str] = None
    px256x256: Optional[str] = None
    px512x512: Optional[str] = None


class ResolvedIdentity(BaseModel):
    """One authorized character as produced by a synchronization pass."""

    identity_id: int
    character_name: str
    corporation_id: int
    portrait_url: str = ""
    credential: Credential
