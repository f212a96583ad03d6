"""EVE entity lookups.

Resolves characters, corporations, alliances and portraits through the ESI
request engine and validates responses into the models in
``whototrust.model.character``. Also manages a character's contact list.
"""

import logging
from typing import Iterable, List, Optional

from aiohttp import hdrs
from pydantic import BaseModel, Field, TypeAdapter
import sentry_sdk

from whototrust.app.config import Settings
from whototrust.esi.errors import EntityNotFoundError, RequestError
from whototrust.esi.request import RequestEngine
from whototrust.model.character import (
    Alliance,
    CharacterPortrait,
    CharacterResponse,
    CorporationInfo,
    User,
)
from whototrust.model.credential import Credential

logger = logging.getLogger(__name__)

CONTACT_STANDING = 5.0
"""Standing assigned to contacts added by ``add_contacts``."""

ContactIds = TypeAdapter(List[int])


class SearchResult(BaseModel):
    """Body of ``/characters/{id}/search/``."""

    character: List[int] = Field(default_factory=list)
    corporation: List[int] = Field(default_factory=list)


class EntityResolver:
    """Typed ESI lookups on top of a RequestEngine."""

    def __init__(self, engine: RequestEngine, settings: Settings) -> None:
        self.engine = engine
        self.settings = settings

    @property
    def datasource(self) -> dict:
        return {"datasource": self.settings.esi_datasource}

    def _url(self, path: str) -> str:
        return f"{self.settings.esi_base_url}{path}"

    async def get_user_info(self, credential: Credential) -> User:
        """Return the character a credential belongs to, via the SSO verify endpoint."""
        body = await self.engine.execute(self.settings.sso_verify_url, credential)
        return User.model_validate_json(body)

    async def get_public_character_data(
        self, character_id: int, credential: Credential
    ) -> CharacterResponse:
        body = await self.engine.execute(
            self._url(f"/characters/{character_id}/"), credential, self.datasource
        )
        return CharacterResponse.model_validate_json(body)

    async def get_character_corporation(
        self, character_id: int, credential: Credential
    ) -> int:
        character = await self.get_public_character_data(character_id, credential)
        return character.corporation_id

    async def get_corporation_info(
        self, corporation_id: int, credential: Optional[Credential] = None
    ) -> CorporationInfo:
        body = await self._get(f"/corporations/{corporation_id}/", credential)
        return CorporationInfo.model_validate_json(body)

    async def get_alliance_info(
        self, alliance_id: int, credential: Optional[Credential] = None
    ) -> Alliance:
        body = await self._get(f"/alliances/{alliance_id}/", credential)
        return Alliance.model_validate_json(body)

    async def get_character(self, character_id: int) -> CharacterResponse:
        """Public character lookup without a credential."""
        body = await self._get(f"/characters/{character_id}/", None)
        return CharacterResponse.model_validate_json(body)

    async def get_character_portrait(self, character_id: int) -> str:
        """
        Return the 64x64 portrait URL of a character.

        The portrait endpoint is public. A failed lookup yields an empty string so
        that a missing portrait never fails the caller.
        """
        try:
            body = await self.engine.execute_public(
                self._url(f"/characters/{character_id}/portrait/"), self.datasource
            )
            portrait = CharacterPortrait.model_validate_json(body)
        except (RequestError, ValueError) as e:
            logger.warning("Unable to get portrait for character %d: %s", character_id, e)
            sentry_sdk.capture_exception(e)
            return ""
        return portrait.px64x64 or ""

    async def character_id_search(
        self, character_id: int, name: str, credential: Credential
    ) -> int:
        """
        Find the id of the character named ``name`` using a strict search.

        When the search returns several ids, each candidate's public data is
        fetched and the one whose name matches exactly wins.

        Raises:
            EntityNotFoundError: If no id matches the name
        """
        result = await self._search(character_id, "character", name, credential)

        if len(result.character) == 0:
            logger.info("no characters returned from esi for %r", name)
            raise EntityNotFoundError.no_match("character", name)

        if len(result.character) == 1:
            return result.character[0]

        for candidate_id in result.character:
            try:
                candidate = await self.get_public_character_data(
                    candidate_id, credential
                )
            except RequestError as e:
                logger.warning("Unable to get character %d: %s", candidate_id, e)
                continue
            if candidate.name == name:
                return candidate_id

        logger.info("%s returned for %r", result.character, name)
        raise EntityNotFoundError.ambiguous("character", name, len(result.character))

    async def corporation_id_search(
        self, character_id: int, name: str, credential: Credential
    ) -> int:
        """
        Find the id of the corporation named ``name`` using a strict search.

        Raises:
            EntityNotFoundError: If the search returns no id or more than one
        """
        result = await self._search(character_id, "corporation", name, credential)

        if len(result.corporation) == 0:
            raise EntityNotFoundError.no_match("corporation", name)
        if len(result.corporation) > 1:
            raise EntityNotFoundError.ambiguous(
                "corporation", name, len(result.corporation)
            )
        return result.corporation[0]

    async def add_contacts(
        self, character_id: int, credential: Credential, contact_ids: Iterable[int]
    ) -> List[int]:
        """Add contacts with a standing of 5.0 and return the ids ESI accepted."""
        contact_ids = list(contact_ids)
        body = await self.engine.send(
            hdrs.METH_POST,
            self._url(f"/characters/{character_id}/contacts/"),
            credential,
            params={"standing": str(CONTACT_STANDING)},
            json=contact_ids,
            ok_statuses=(200, 201),
        )
        added = ContactIds.validate_json(body) if len(body) > 0 else []
        logger.info("Contacts added successfully: %s", added)
        return added

    async def delete_contacts(
        self, character_id: int, credential: Credential, contact_ids: Iterable[int]
    ) -> None:
        contact_ids = list(contact_ids)
        params = [("contact_ids", str(contact_id)) for contact_id in contact_ids]
        params.append(("datasource", self.settings.esi_datasource))
        await self.engine.send(
            hdrs.METH_DELETE,
            self._url(f"/characters/{character_id}/contacts/"),
            credential,
            params=params,
            ok_statuses=(204,),
        )
        logger.info("Contacts deleted successfully %s", contact_ids)

    async def _get(self, path: str, credential: Optional[Credential]) -> bytes:
        if credential is None:
            return await self.engine.execute_public(self._url(path), self.datasource)
        return await self.engine.execute(self._url(path), credential, self.datasource)

    async def _search(
        self, character_id: int, category: str, name: str, credential: Credential
    ) -> SearchResult:
        params = {
            "categories": category,
            "datasource": self.settings.esi_datasource,
            "language": "en",
            "search": name,
            "strict": "true",
        }
        body = await self.engine.execute(
            self._url(f"/characters/{character_id}/search/"), credential, params
        )
        return SearchResult.model_validate_json(body)
