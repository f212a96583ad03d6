from typing import List
import argparse
import aiohttp
import asyncio
import logging

from whototrust.app.config import Settings
from whototrust.esi.errors import RequestError
from whototrust.esi.request import RequestEngine
from whototrust.resolve.entity import EntityResolver

logger = logging.getLogger(__name__)


async def realMain() -> None:
    parser = argparse.ArgumentParser(
        prog="resolve", description="Resolve public character information"
    )
    parser.add_argument(
        "character_id", nargs="+", type=int, help="The character id(s) to resolve."
    )
    parser.add_argument(
        "--esi-base-url",
        default=None,
        help="The ESI base URL to use instead of the configured one.",
    )

    args = vars(parser.parse_args())

    character_ids: List[int] = args.get("character_id", [])

    settings = Settings()  # type: ignore
    if args.get("esi_base_url"):
        settings = settings.model_copy(update={"esi_base_url": args["esi_base_url"]})

    async with aiohttp.ClientSession() as session:
        resolver = EntityResolver(RequestEngine(settings, session), settings)
        for character_id in character_ids:
            try:
                character = await resolver.get_character(character_id)
                print(f"character {character_id} {character.model_dump_json()}")

                corporation = await resolver.get_corporation_info(
                    character.corporation_id
                )
                print(
                    f"corporation {character.corporation_id} {corporation.model_dump_json()}"
                )

                if character.alliance_id is not None:
                    alliance = await resolver.get_alliance_info(character.alliance_id)
                    print(f"alliance {character.alliance_id} {alliance.model_dump_json()}")

                portrait = await resolver.get_character_portrait(character_id)
                print(f"portrait {portrait}")
            except (RequestError, ValueError):
                logging.exception("Exception resolving character %d", character_id)


def main() -> None:
    asyncio.run(realMain())


if __name__ == "__main__":
    main()
