"""Services package for the matching core."""

from dataclasses import dataclass
from typing import Optional

from src.config import Settings
from src.services.blocklist_service import BlocklistGate
from src.services.call_service import CallService
from src.services.compatibility_service import CompatibilityEvaluator, calculate_age, is_mutually_compatible
from src.services.conversation_service import ConversationService, can_send_message, canonical_pair
from src.services.discovery_service import DiscoveryService
from src.services.interaction_service import InteractionLedger
from src.services.notification_service import LoggingNotifier, Notifier, dispatch_best_effort
from src.services.profile_service import ProfileService
from src.utils.database import Database
from src.utils.i18n import I18n
from src.utils.rate_limiter import RateLimiter


@dataclass
class CoreServices:
    """One instance of every service, built at process start and shared by all requests."""

    database: Database
    settings: Settings
    gate: BlocklistGate
    profiles: ProfileService
    interactions: InteractionLedger
    compatibility: CompatibilityEvaluator
    conversations: ConversationService
    discovery: DiscoveryService
    calls: CallService
    notifier: Notifier
    rate_limiter: RateLimiter
    i18n: I18n


def build_services(
    database: Database,
    settings: Settings,
    notifier: Optional[Notifier] = None,
    rate_limiter: Optional[RateLimiter] = None,
    i18n: Optional[I18n] = None,
) -> CoreServices:
    """Wire the services together. Collaborators default to logging only and no rate limiting."""
    i18n = i18n or I18n()
    gate = BlocklistGate()
    conversations = ConversationService(gate, i18n, settings)
    return CoreServices(
        database=database,
        settings=settings,
        gate=gate,
        profiles=ProfileService(),
        interactions=InteractionLedger(conversations),
        compatibility=CompatibilityEvaluator(),
        conversations=conversations,
        discovery=DiscoveryService(gate, settings),
        calls=CallService(gate, i18n, settings),
        notifier=notifier or LoggingNotifier(),
        rate_limiter=rate_limiter or RateLimiter(None),
        i18n=i18n,
    )


__all__ = [
    "BlocklistGate",
    "CallService",
    "CompatibilityEvaluator",
    "ConversationService",
    "CoreServices",
    "DiscoveryService",
    "InteractionLedger",
    "LoggingNotifier",
    "Notifier",
    "ProfileService",
    "build_services",
    "calculate_age",
    "can_send_message",
    "canonical_pair",
    "dispatch_best_effort",
    "is_mutually_compatible",
]
