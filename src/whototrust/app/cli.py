import argparse
import asyncio
import base64
import json
import logging
from logging.config import dictConfig
import os
from typing import Optional

from aio_statsd import TelegrafStatsdClient
import aiohttp
import sentry_sdk

from whototrust.app.config import Settings, generate_secret_key
from whototrust.app.metrics import MetricsClient, create_metrics_client
from whototrust.esi.identity import IdentitySynchronizer
from whototrust.esi.oauth import TokenAuthority
from whototrust.esi.request import RequestEngine
from whototrust.persist.encrypt import CredentialCipher
from whototrust.persist.identity import CredentialStore
from whototrust.resolve.entity import EntityResolver

logger = logging.getLogger(__name__)


def configure_logging():
    logging_config_file = os.getenv("LOGGING_CONFIG_FILE", "")

    if len(logging_config_file) > 0:
        with open(logging_config_file) as fl:
            dictConfig(json.load(fl))
        return

    logging.basicConfig()
    logging.getLogger().setLevel(logging.DEBUG)


def load_settings() -> Settings:
    settings = Settings()  # type: ignore

    if "secret_key" not in settings.model_fields_set:
        logger.warning(
            "SECRET_KEY is not set, using a generated key. Stored credentials will "
            "be unreadable after a restart."
        )

    if settings.sentry_dsn:
        sentry_sdk.init(dsn=settings.sentry_dsn, send_default_pii=False)

    return settings


async def build_metrics_client(settings: Settings) -> MetricsClient:
    telegraf_client = None
    if settings.metrics_backend == "telegraf":
        telegraf_client = TelegrafStatsdClient(
            host=settings.statsd_host, port=settings.statsd_port, debug=settings.debug
        )
        await telegraf_client.connect()

    return create_metrics_client(
        settings.metrics_backend,
        host=settings.statsd_host,
        port=settings.statsd_port,
        telegraf_client=telegraf_client,
        debug=settings.debug,
    )


def build_synchronizer(
    settings: Settings,
    http_session: aiohttp.ClientSession,
    metrics_client: Optional[MetricsClient] = None,
) -> IdentitySynchronizer:
    authority = TokenAuthority(settings, http_session, metrics_client)
    engine = RequestEngine(settings, http_session, authority, metrics_client)
    resolver = EntityResolver(engine, settings)
    store = CredentialStore(CredentialCipher(settings.secret_key), settings.data_dir)
    return IdentitySynchronizer(authority, resolver, store, metrics_client)


async def genKey() -> None:
    print(base64.b64encode(generate_secret_key()).decode("utf-8"))


async def authUrl(settings: Settings, main: bool) -> None:
    async with aiohttp.ClientSession() as http_session:
        authority = TokenAuthority(settings, http_session)
        print(authority.authorization_url(TokenAuthority.login_state(main)))


async def syncIdentities(settings: Settings, main_identity: int) -> int:
    metrics_client = await build_metrics_client(settings)
    try:
        async with aiohttp.ClientSession() as http_session:
            synchronizer = build_synchronizer(settings, http_session, metrics_client)
            result = await synchronizer.synchronize_persisted(main_identity)
    finally:
        await metrics_client.close()

    for identity in sorted(result.identities.values(), key=lambda i: i.identity_id):
        print(
            f"{identity.identity_id} {identity.character_name} "
            f"corporation={identity.corporation_id} portrait={identity.portrait_url}"
        )
    for identity_id, error in sorted(result.failures.items()):
        print(f"{identity_id} failed: {error}")

    return 1 if len(result.failures) > 0 else 0


async def resetIdentities(settings: Settings, main_identity: int) -> int:
    async with aiohttp.ClientSession() as http_session:
        synchronizer = build_synchronizer(settings, http_session)
        deleted = await synchronizer.reset(main_identity)
    print(f"identities for {main_identity} {'removed' if deleted else 'not found'}")
    return 0


async def realMain(argv: Optional[list] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="whototrust", description="EVE Online identity sync utilities"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    _ = subparsers.add_parser("gen-key", help="Generate a SECRET_KEY value")
    auth_url = subparsers.add_parser(
        "auth-url", help="Print an EVE SSO authorization URL"
    )
    auth_url.add_argument(
        "--character",
        action="store_true",
        help="Authorize an additional character instead of a main character.",
    )
    sync = subparsers.add_parser(
        "sync", help="Refresh and resolve every character of a main character"
    )
    sync.add_argument("main_identity", type=int, help="The main character id.")
    reset = subparsers.add_parser(
        "reset", help="Forget every character of a main character"
    )
    reset.add_argument("main_identity", type=int, help="The main character id.")

    args = vars(parser.parse_args(argv))
    command = args.get("command", None)

    if command == "gen-key":
        await genKey()
        return 0

    settings = load_settings()

    if command == "auth-url":
        if not settings.oauth_configured:
            logger.error(
                "EVE_CLIENT_ID, EVE_CLIENT_SECRET and EVE_CALLBACK_URL must be set"
            )
            return 2
        await authUrl(settings, not args.get("character", False))
    elif command == "sync":
        if not settings.oauth_configured:
            logger.error(
                "EVE_CLIENT_ID, EVE_CLIENT_SECRET and EVE_CALLBACK_URL must be set"
            )
            return 2
        return await syncIdentities(settings, args["main_identity"])
    elif command == "reset":
        return await resetIdentities(settings, args["main_identity"])

    return 0


def invoke():
    configure_logging()

    raise SystemExit(asyncio.run(realMain()))


if __name__ == "__main__":
    invoke()
