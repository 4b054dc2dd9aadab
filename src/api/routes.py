"""HTTP routes. Each handler runs one unit of work, then dispatches notifications."""

from datetime import datetime
from typing import Annotated, Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, Query, Request

from src.api.schemas import ActivityScopesRequest, ArchiveRequest, CallableRequest, MuteRequest, SendMessageRequest
from src.models.profile import DatingPreferences, SocialFilterUpdate
from src.services import CoreServices
from src.services.notification_service import (
    EVENT_CALL_ACCEPTED,
    EVENT_CALL_ENDED,
    EVENT_CALL_MISSED,
    EVENT_INCOMING_CALL,
    EVENT_NEW_LIKE,
    EVENT_NEW_MATCH,
    EVENT_NEW_MESSAGE,
    dispatch_best_effort,
)
from src.utils.logging import bind_request_context
from src.utils.security import clean_message_for_notification


def get_services(request: Request) -> CoreServices:
    return request.app.state.services


def get_profile_id(x_profile_id: Annotated[str, Header(min_length=1)]) -> str:
    """The caller's profile id, resolved upstream by the auth layer."""
    bind_request_context(profile_id=x_profile_id)
    return x_profile_id


Services = Annotated[CoreServices, Depends(get_services)]
ProfileId = Annotated[str, Depends(get_profile_id)]


def _ok(**payload: Any) -> Dict[str, Any]:
    return {"success": True, **payload}


# Profiles

profiles_router = APIRouter(prefix="/profiles", tags=["profiles"])


@profiles_router.get("/me")
def get_my_profile(services: Services, profile_id: ProfileId) -> Dict[str, Any]:
    with services.database.transaction() as session:
        profile = services.profiles.get_profile(session, profile_id)
    return _ok(profile=profile.model_dump(mode="json"))


@profiles_router.patch("/me/scopes")
def update_scopes(body: ActivityScopesRequest, services: Services, profile_id: ProfileId) -> Dict[str, Any]:
    profile = services.database.run_in_transaction(
        lambda session: services.profiles.update_activity_scopes(
            session, profile_id, body.is_social_active, body.is_dating_active
        )
    )
    return _ok(profile=profile.model_dump(mode="json"))


@profiles_router.put("/me/dating-preferences")
def update_dating_preferences(body: DatingPreferences, services: Services, profile_id: ProfileId) -> Dict[str, Any]:
    profile = services.database.run_in_transaction(
        lambda session: services.profiles.update_dating_preferences(session, profile_id, body)
    )
    return _ok(profile=profile.model_dump(mode="json"))


@profiles_router.get("/me/social-filter")
def get_social_filter(services: Services, profile_id: ProfileId) -> Dict[str, Any]:
    with services.database.transaction() as session:
        social_filter = services.profiles.get_social_filter(session, profile_id)
    return _ok(filter=social_filter.model_dump(mode="json") if social_filter else None)


@profiles_router.put("/me/social-filter")
def update_social_filter(body: SocialFilterUpdate, services: Services, profile_id: ProfileId) -> Dict[str, Any]:
    social_filter = services.database.run_in_transaction(
        lambda session: services.profiles.update_social_filter(session, profile_id, body)
    )
    return _ok(filter=social_filter.model_dump(mode="json"))


# Interactions

interactions_router = APIRouter(prefix="/interactions", tags=["interactions"])


@interactions_router.get("/stats")
def get_stats(services: Services, profile_id: ProfileId) -> Dict[str, Any]:
    with services.database.transaction() as session:
        stats = services.interactions.get_stats(session, profile_id)
    return _ok(**stats.as_payload())


@interactions_router.get("/sent")
def get_likes_sent(services: Services, profile_id: ProfileId) -> Dict[str, Any]:
    with services.database.transaction() as session:
        sent = services.interactions.get_likes_sent(session, profile_id)
    return _ok(sent=[edge.model_dump(mode="json") for edge in sent])


@interactions_router.get("/matches")
def get_matches(services: Services, profile_id: ProfileId) -> Dict[str, Any]:
    with services.database.transaction() as session:
        matches = services.interactions.get_matches(session, profile_id)
    return _ok(matches=[edge.model_dump(mode="json") for edge in matches])


@interactions_router.get("/received")
def get_received_count(services: Services, profile_id: ProfileId) -> Dict[str, Any]:
    with services.database.transaction() as session:
        count = services.interactions.get_likes_received_count(session, profile_id)
    return _ok(count=count)


@interactions_router.post("/like/{target_id}")
def like(target_id: str, services: Services, profile_id: ProfileId) -> Dict[str, Any]:
    services.rate_limiter.enforce(profile_id, "like")

    def work(session: Any) -> Any:
        services.gate.ensure_can_interact(session, profile_id, target_id)
        return services.interactions.like(session, profile_id, target_id)

    result = services.database.run_in_transaction(work)

    event = EVENT_NEW_MATCH if result.is_match else EVENT_NEW_LIKE
    dispatch_best_effort(services.notifier, result.to_edge.profile_id, event, result.to_edge.model_dump(mode="json"))
    return _ok(is_match=result.is_match, edge=result.from_edge.model_dump(mode="json"))


@interactions_router.post("/pass/{target_id}")
def pass_profile(target_id: str, services: Services, profile_id: ProfileId) -> Dict[str, Any]:
    services.rate_limiter.enforce(profile_id, "pass")

    def work(session: Any) -> None:
        services.gate.ensure_can_interact(session, profile_id, target_id)
        services.interactions.pass_profile(session, profile_id, target_id)

    services.database.run_in_transaction(work)
    return _ok()


# Messages

messages_router = APIRouter(prefix="/messages", tags=["messages"])


@messages_router.get("/conversations")
def list_conversations(services: Services, profile_id: ProfileId) -> Dict[str, Any]:
    with services.database.transaction() as session:
        summaries = services.conversations.list_conversations_for_profile(session, profile_id)
    return _ok(conversations=[s.model_dump(mode="json") for s in summaries])


@messages_router.get("/conversations/{conversation_id}")
def get_conversation(conversation_id: str, services: Services, profile_id: ProfileId) -> Dict[str, Any]:
    with services.database.transaction() as session:
        summary = services.conversations.get_conversation_summary(session, conversation_id, profile_id)
    return _ok(conversation=summary.model_dump(mode="json"))


@messages_router.get("/conversations/{conversation_id}/messages")
def list_messages(
    conversation_id: str,
    services: Services,
    profile_id: ProfileId,
    limit: Annotated[Optional[int], Query(ge=1, le=100)] = None,
    before: Optional[datetime] = None,
) -> Dict[str, Any]:
    with services.database.transaction() as session:
        page = services.conversations.list_messages(session, conversation_id, profile_id, limit=limit, before=before)
    return _ok(**page.model_dump(mode="json"))


@messages_router.post("/send")
def send_message(body: SendMessageRequest, services: Services, profile_id: ProfileId) -> Dict[str, Any]:
    services.rate_limiter.enforce(profile_id, "message")
    result = services.database.run_in_transaction(
        lambda session: services.conversations.send_or_start_conversation(
            session, profile_id, body.recipient_id, body.content, body.message_type, body.attachment
        ),
        retry=False,
    )

    dispatch_best_effort(
        services.notifier,
        result.recipient_id,
        EVENT_NEW_MESSAGE,
        {
            "conversation_id": result.conversation.id,
            "message_id": result.message.id,
            "sender_id": profile_id,
            "preview": clean_message_for_notification(result.message.content),
        },
    )
    return _ok(
        conversation=result.conversation.model_dump(mode="json"),
        message=result.message.model_dump(mode="json"),
    )


@messages_router.post("/conversations/{conversation_id}/read")
def mark_read(conversation_id: str, services: Services, profile_id: ProfileId) -> Dict[str, Any]:
    participant = services.database.run_in_transaction(
        lambda session: services.conversations.mark_conversation_read(session, conversation_id, profile_id)
    )
    return _ok(participant=participant.model_dump(mode="json"))


@messages_router.post("/conversations/{conversation_id}/mute")
def mute(conversation_id: str, body: MuteRequest, services: Services, profile_id: ProfileId) -> Dict[str, Any]:
    participant = services.database.run_in_transaction(
        lambda session: services.conversations.set_muted(session, conversation_id, profile_id, body.muted)
    )
    return _ok(participant=participant.model_dump(mode="json"))


@messages_router.post("/conversations/{conversation_id}/archive")
def archive(conversation_id: str, body: ArchiveRequest, services: Services, profile_id: ProfileId) -> Dict[str, Any]:
    participant = services.database.run_in_transaction(
        lambda session: services.conversations.set_archived(session, conversation_id, profile_id, body.archived)
    )
    return _ok(participant=participant.model_dump(mode="json"))


# Calls

calls_router = APIRouter(prefix="/calls", tags=["calls"])


@calls_router.get("/{conversation_id}")
def get_call(conversation_id: str, services: Services, profile_id: ProfileId) -> Dict[str, Any]:
    with services.database.transaction() as session:
        call = services.calls.get_call_session(session, conversation_id, profile_id)
    return _ok(call=call.model_dump(mode="json"))


@calls_router.post("/{conversation_id}/initiate")
def initiate_call(conversation_id: str, services: Services, profile_id: ProfileId) -> Dict[str, Any]:
    services.rate_limiter.enforce(profile_id, "call")
    call = services.database.run_in_transaction(
        lambda session: services.calls.initiate_call(session, conversation_id, profile_id), retry=False
    )
    if call.callee_id:
        dispatch_best_effort(services.notifier, call.callee_id, EVENT_INCOMING_CALL, call.model_dump(mode="json"))
    return _ok(call=call.model_dump(mode="json"))


@calls_router.post("/{conversation_id}/accept")
def accept_call(conversation_id: str, services: Services, profile_id: ProfileId) -> Dict[str, Any]:
    call = services.database.run_in_transaction(
        lambda session: services.calls.accept_call(session, conversation_id, profile_id), retry=False
    )
    if call.caller_id:
        dispatch_best_effort(services.notifier, call.caller_id, EVENT_CALL_ACCEPTED, call.model_dump(mode="json"))
    return _ok(call=call.model_dump(mode="json"))


def _finish(services: CoreServices, termination: Any, profile_id: str) -> Dict[str, Any]:
    if termination is None:
        return _ok(missed_call=None)
    recipient = termination.callee_id if termination.caller_id == profile_id else termination.caller_id
    dispatch_best_effort(services.notifier, recipient, EVENT_CALL_MISSED, termination.model_dump(mode="json"))
    return _ok(missed_call=termination.missed_call.model_dump(mode="json"), reason=termination.reason)


@calls_router.post("/{conversation_id}/decline")
def decline_call(conversation_id: str, services: Services, profile_id: ProfileId) -> Dict[str, Any]:
    termination = services.database.run_in_transaction(
        lambda session: services.calls.decline_call(session, conversation_id, profile_id)
    )
    return _finish(services, termination, profile_id)


@calls_router.post("/{conversation_id}/cancel")
def cancel_call(conversation_id: str, services: Services, profile_id: ProfileId) -> Dict[str, Any]:
    termination = services.database.run_in_transaction(
        lambda session: services.calls.cancel_call(session, conversation_id, profile_id)
    )
    return _finish(services, termination, profile_id)


@calls_router.post("/{conversation_id}/timeout")
def timeout_call(conversation_id: str, services: Services, profile_id: ProfileId) -> Dict[str, Any]:
    termination = services.database.run_in_transaction(
        lambda session: services.calls.timeout_call(session, conversation_id, profile_id)
    )
    return _finish(services, termination, profile_id)


@calls_router.post("/{conversation_id}/end")
def end_call(conversation_id: str, services: Services, profile_id: ProfileId) -> Dict[str, Any]:
    def work(session: Any) -> Optional[str]:
        conversation = services.conversations.get_conversation(session, conversation_id, profile_id)
        if services.calls.end_call(session, conversation_id, profile_id):
            return conversation.other_profile_id(profile_id)
        return None

    other_id = services.database.run_in_transaction(work)
    if other_id is not None:
        dispatch_best_effort(services.notifier, other_id, EVENT_CALL_ENDED, {"conversation_id": conversation_id})
    return _ok(ended=other_id is not None)


@calls_router.patch("/{conversation_id}/callable")
def update_callable(
    conversation_id: str, body: CallableRequest, services: Services, profile_id: ProfileId
) -> Dict[str, Any]:
    participant = services.database.run_in_transaction(
        lambda session: services.calls.update_callable_status(session, conversation_id, profile_id, body.is_callable)
    )
    return _ok(participant=participant.model_dump(mode="json"))


# Discovery

discover_router = APIRouter(prefix="/discover", tags=["discover"])

Limit = Annotated[Optional[int], Query(ge=1, le=100)]
Offset = Annotated[int, Query(ge=0)]
Radius = Annotated[float, Query(gt=0, le=500)]


@discover_router.get("/social")
def discover_social(services: Services, profile_id: ProfileId, limit: Limit = None, offset: Offset = 0) -> Dict[str, Any]:
    with services.database.transaction() as session:
        profiles = services.discovery.find_social_profiles(session, profile_id, limit, offset)
    return _ok(profiles=[p.model_dump(mode="json") for p in profiles])


@discover_router.get("/new")
def discover_new(services: Services, profile_id: ProfileId, limit: Limit = None, offset: Offset = 0) -> Dict[str, Any]:
    with services.database.transaction() as session:
        profiles = services.discovery.find_new_profiles_anywhere(session, profile_id, limit, offset)
    return _ok(profiles=[p.model_dump(mode="json") for p in profiles])


@discover_router.get("/dating")
def discover_dating(services: Services, profile_id: ProfileId, limit: Limit = None, offset: Offset = 0) -> Dict[str, Any]:
    with services.database.transaction() as session:
        profiles = services.discovery.find_dating_profiles(session, profile_id, limit, offset)
    return _ok(profiles=[p.model_dump(mode="json") for p in profiles])


@discover_router.get("/nearby")
def discover_nearby(
    lat: float, lon: float, radius: Radius, services: Services, profile_id: ProfileId, limit: Limit = None
) -> Dict[str, Any]:
    with services.database.transaction() as session:
        results = services.discovery.find_nearby_profiles(session, profile_id, lat, lon, radius, limit)
    return _ok(profiles=[r.model_dump(mode="json") for r in results])


@discover_router.get("/posts")
def discover_posts(
    lat: float,
    lon: float,
    radius: Radius,
    services: Services,
    profile_id: ProfileId,
    limit: Limit = None,
    offset: Offset = 0,
) -> Dict[str, Any]:
    with services.database.transaction() as session:
        posts = services.discovery.find_nearby_posts(session, lat, lon, radius, profile_id, limit, offset)
    return _ok(posts=[p.model_dump(mode="json") for p in posts])


@discover_router.get("/compatibility/{other_id}")
def check_compatibility(other_id: str, services: Services, profile_id: ProfileId) -> Dict[str, Any]:
    with services.database.transaction() as session:
        compatible = services.gate.can_interact(
            session, profile_id, other_id
        ) and services.compatibility.are_profiles_mutually_compatible(session, profile_id, other_id)
    return _ok(compatible=compatible)


# Blocks

blocks_router = APIRouter(prefix="/blocks", tags=["blocks"])


@blocks_router.get("")
def list_blocked(services: Services, profile_id: ProfileId) -> Dict[str, Any]:
    with services.database.transaction() as session:
        blocked = services.gate.list_blocked(session, profile_id)
    return _ok(blocked=blocked)


@blocks_router.post("/{target_id}")
def block(target_id: str, services: Services, profile_id: ProfileId) -> Dict[str, Any]:
    services.rate_limiter.enforce(profile_id, "block")
    services.database.run_in_transaction(lambda session: services.gate.block(session, profile_id, target_id))
    return _ok()


@blocks_router.delete("/{target_id}")
def unblock(target_id: str, services: Services, profile_id: ProfileId) -> Dict[str, Any]:
    removed = services.database.run_in_transaction(
        lambda session: services.gate.unblock(session, profile_id, target_id)
    )
    return _ok(removed=removed)


ROUTERS = [
    profiles_router,
    interactions_router,
    messages_router,
    calls_router,
    discover_router,
    blocks_router,
]
