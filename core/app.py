import asyncio
import signal
import sys
from typing import Optional

from dotenv import load_dotenv

from core.config_loader import ConfigLoader
from core.config_watcher import ConfigWatcherConfig, build_config_watcher
from core.orchestrator import AccountConnectionOrchestrator
from runtime.version import as_string
from services.commands import CommandDispatchGate, CommandRegistry, PingCommand
from services.streamlabs.adapter import StreamlabsConnectionAdapter
from services.twitch.adapter import TwitchConnectionAdapter
from services.twitch.api.helix import TwitchHelixClient
from services.youtube.adapter import YouTubeConnectionAdapter
from shared.auth.tokens import EnvCredentialProvider
from shared.badges.cache import BadgeEmoteCache, TwitchBadgeSource
from shared.events.bus import ConnectionsChangedNotifier, EventBus
from shared.events.models import Event, SystemMessage
from shared.logging.logger import get_logger
from shared.normalizer import EventNormalizer
from shared.runtime.quotas import QuotaPolicy, QuotaRegistry

log = get_logger("core.app")


def _log_event(event: Event) -> None:
    if isinstance(event, SystemMessage):
        log.info(f"[{event.originating_account_id or 'system'}] {event.message}")
    else:
        log.debug(f"[{event.platform}] {event.kind}: {event.to_dict()}")


async def main(stop_event: asyncio.Event):
    # --------------------------------------------------
    # ENV + SETTINGS
    # --------------------------------------------------
    load_dotenv()
    log.info("Environment variables loaded")
    log.info(f"{as_string()} booting")

    loader = ConfigLoader()
    settings = loader.load_connection_settings()

    # --------------------------------------------------
    # CORE SYSTEMS
    # --------------------------------------------------
    credentials = EnvCredentialProvider()
    bus = EventBus()
    bus.subscribe(_log_event)
    notifier = ConnectionsChangedNotifier()
    orchestrator: Optional[AccountConnectionOrchestrator] = None

    badge_cache = None
    twitch_client_id = settings.credentials.twitch_client_id
    if twitch_client_id:
        helix = TwitchHelixClient(client_id=twitch_client_id)
        badge_cache = BadgeEmoteCache(
            TwitchBadgeSource(
                helix,
                credentials,
                lambda: [a.account_id for a in orchestrator.settings.twitch_accounts]
                if orchestrator
                else [],
            )
        )
    else:
        log.warning("TWITCH_CLIENT_ID not set; Twitch badge images disabled")

    normalizer = EventNormalizer(badge_cache)

    commands = CommandRegistry()
    commands.register(PingCommand())
    gate = CommandDispatchGate(processor=commands, publish=bus.publish)

    # --------------------------------------------------
    # ADAPTERS
    # --------------------------------------------------
    twitch = TwitchConnectionAdapter(
        bus=bus,
        normalizer=normalizer,
        badge_cache=badge_cache,
        gate=gate,
        on_status_changed=notifier.notify,
    )
    youtube = YouTubeConnectionAdapter(
        bus=bus,
        normalizer=normalizer,
        gate=gate,
        quotas=QuotaRegistry(QuotaPolicy.from_env()),
        api_key=settings.credentials.youtube_api_key,
        on_status_changed=notifier.notify,
    )
    streamlabs = StreamlabsConnectionAdapter(
        bus=bus,
        normalizer=normalizer,
        on_status_changed=notifier.notify,
    )

    orchestrator = AccountConnectionOrchestrator(
        twitch=twitch,
        youtube=youtube,
        streamlabs=streamlabs,
        credentials=credentials,
        bus=bus,
        badge_cache=badge_cache,
        gate=gate,
        notifier=notifier,
    )

    # --------------------------------------------------
    # START CONNECTIONS
    # --------------------------------------------------
    await orchestrator.start(settings)

    watcher_task = None
    watcher = build_config_watcher(
        ConfigWatcherConfig.from_env(), loader, orchestrator.apply_settings
    )
    if watcher:
        watcher_task = asyncio.create_task(watcher.run(stop_event))

    # --------------------------------------------------
    # BLOCK UNTIL SHUTDOWN SIGNAL
    # --------------------------------------------------
    await stop_event.wait()

    log.info("Shutdown initiated")

    try:
        await orchestrator.shutdown()
    except Exception as e:
        log.warning(f"Orchestrator shutdown error ignored: {e}")

    if watcher_task:
        try:
            await asyncio.wait_for(watcher_task, timeout=5.0)
        except asyncio.TimeoutError:
            watcher_task.cancel()

    await bus.drain()
    log.info("chatrelay stopped")


# ----------------------------------------------------------------------
# SIGNAL HANDLING (WINDOWS-SAFE)
# ----------------------------------------------------------------------

def _install_signal_handlers(
    loop: asyncio.AbstractEventLoop,
    stop_event: asyncio.Event,
):
    """
    Ctrl+C / SIGTERM handler.
    Uses signal.signal + asyncio.Event so main() can unwind in order.
    """

    def _handler(signum, frame):
        try:
            loop.call_soon_threadsafe(stop_event.set)
        except RuntimeError:
            stop_event.set()

    try:
        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)
    except (ValueError, OSError) as e:
        log.debug(f"Signal handlers not installed: {e}")


# ----------------------------------------------------------------------
# ENTRYPOINT
# ----------------------------------------------------------------------

def run():
    stop_event = asyncio.Event()

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    _install_signal_handlers(loop, stop_event)

    try:
        loop.run_until_complete(main(stop_event))

    except KeyboardInterrupt:
        log.info("KeyboardInterrupt received; shutdown initiated")
        stop_event.set()
        loop.run_until_complete(asyncio.sleep(0))

    finally:
        # --------------------------------------------------
        # CANCEL REMAINING TASKS
        # --------------------------------------------------
        pending = [t for t in asyncio.all_tasks(loop) if not t.done()]
        for task in pending:
            task.cancel()

        if pending:
            loop.run_until_complete(
                asyncio.gather(*pending, return_exceptions=True)
            )

        loop.run_until_complete(loop.shutdown_asyncgens())
        asyncio.set_event_loop(None)
        loop.close()


if __name__ == "__main__":
    run()
    sys.exit(0)
