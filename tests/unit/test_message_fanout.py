from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from clubhub.notifications.contracts import FanoutError, FanoutOutcome, FanoutStage, PushGatewayError
from clubhub.notifications.service import PUSH_FALLBACK_BODY, MessageNotificationService, build_push_body
from clubhub.schema.records import CommunityType, DeliveryToken, Message


def _message(text: str = "See you at the club fair today", *, sender: str = "A", community: str = "C", message_id: str | None = "m1", community_type: str | None = None) -> Message:
  data = {"communityId": community, "senderId": sender, "text": text, "messageId": message_id}
  if community_type is not None:
    data["type"] = community_type
  return Message.model_validate(data)


@pytest.mark.anyio
async def test_notifies_every_member_but_sender_and_pushes_available_tokens(service, store, push_gateway):
  store.members = {"C": ["A", "B", "D"]}
  store.tokens = {"B": "t1"}

  result = await service.handle_message_created(_message())

  assert result.outcome is FanoutOutcome.PUSH_DISPATCHED
  assert store.notified_user_ids() == ["B", "D"]
  assert all(not notification.is_read for notification in store.notifications.values())
  assert len(push_gateway.calls) == 1
  assert push_gateway.calls[0].tokens == ("t1",)
  assert result.recipient_count == 2
  assert result.token_count == 1
  assert result.notifications_created == 2


@pytest.mark.anyio
async def test_sender_only_community_writes_nothing(service, store, push_gateway):
  store.members = {"C": ["A"]}
  store.tokens = {"A": "t-sender"}

  result = await service.handle_message_created(_message())

  assert result.outcome is FanoutOutcome.NOTIFICATIONS_WRITTEN
  assert store.notifications == {}
  assert push_gateway.calls == []
  assert store.token_lookups == []


@pytest.mark.anyio
async def test_member_without_token_is_notified_but_not_pushed(service, store, push_gateway):
  store.members = {"C": ["A", "B"]}

  result = await service.handle_message_created(_message())

  assert result.outcome is FanoutOutcome.NOTIFICATIONS_WRITTEN
  assert store.notified_user_ids() == ["B"]
  assert push_gateway.calls == []


@pytest.mark.anyio
async def test_empty_community_is_a_no_op(service, store, push_gateway):
  result = await service.handle_message_created(_message())

  assert result.outcome is FanoutOutcome.SKIPPED_NO_MEMBERS
  assert store.notifications == {}
  assert store.token_lookups == []
  assert push_gateway.calls == []


@pytest.mark.anyio
async def test_push_body_is_truncated_to_first_hundred_characters(service, store, push_gateway):
  store.members = {"C": ["A", "B"]}
  store.tokens = {"B": "t1"}
  text = "".join(str(index % 10) for index in range(150))

  await service.handle_message_created(_message(text))

  push = push_gateway.calls[0]
  assert push.body == text[:100]
  assert len(push.body) == 100
  assert push.title == "New Message"
  assert push.data == {"communityId": "C", "type": "community"}


def test_build_push_body_handles_short_and_empty_text():
  assert build_push_body("hello") == "hello"
  assert build_push_body("") == PUSH_FALLBACK_BODY
  assert build_push_body("abcdef", max_chars=3) == "abc"


@pytest.mark.anyio
async def test_notification_record_carries_message_context(service, store):
  store.members = {"club-7": ["A", "B"]}

  await service.handle_message_created(_message(community="club-7", community_type="club"))

  notification = store.notifications["m1_B"]
  assert notification.type == "new_message"
  assert notification.reference_id == "club-7"
  assert notification.message == "New message in your club"
  assert notification.community_type == "club"
  assert store.member_queries == [("club-7", CommunityType.CLUB)]


@pytest.mark.anyio
async def test_duplicate_members_receive_a_single_notification(service, store, push_gateway):
  store.members = {"C": ["A", "B", "B", "D", "", "D"]}
  store.tokens = {"B": "t1", "D": "t1"}

  result = await service.handle_message_created(_message())

  assert store.notified_user_ids() == ["B", "D"]
  assert result.recipient_count == 2
  # Two users sharing one device still produce one push target.
  assert push_gateway.calls[0].tokens == ("t1",)


@pytest.mark.anyio
async def test_padded_member_ids_are_normalized_before_sender_filter(service, store, push_gateway):
  store.members = {"C": [" A ", " B", "B ", "  "]}
  store.tokens = {"B": "t1"}

  result = await service.handle_message_created(_message())

  assert store.notified_user_ids() == ["B"]
  assert sorted(store.notifications) == ["m1_B"]
  assert result.recipient_count == 1
  assert store.token_lookups == ["B"]
  assert push_gateway.calls[0].tokens == ("t1",)


@pytest.mark.anyio
async def test_event_chat_notifies_participants(service, store, push_gateway):
  store.members = {"E": ["A", "B"]}
  store.tokens = {"B": "t1"}

  await service.handle_message_created(_message(community="E", community_type="event"))

  assert store.member_queries == [("E", CommunityType.EVENT)]
  assert store.notifications["m1_B"].message == "New message in your event"
  assert store.notifications["m1_B"].community_type == "event"
  assert push_gateway.calls[0].data == {"communityId": "E", "type": "event"}


@pytest.mark.anyio
async def test_write_failure_is_isolated_and_reported(service, store, push_gateway):
  store.members = {"C": ["A", "B", "D", "E"]}
  store.tokens = {"D": "t-d"}
  store.failing_writes = {"B"}

  with pytest.raises(FanoutError) as excinfo:
    await service.handle_message_created(_message())

  assert excinfo.value.stage is FanoutStage.WRITE_NOTIFICATIONS
  assert [failure.user_id for failure in excinfo.value.failures] == ["B"]
  assert excinfo.value.message_id == "m1"
  assert store.notified_user_ids() == ["D", "E"]
  assert len(push_gateway.calls) == 1


@pytest.mark.anyio
async def test_gateway_failure_fails_invocation_after_notifications_are_written(service, store, push_gateway):
  push_gateway.error = PushGatewayError("FCM unavailable")
  store.members = {"C": ["A", "B"]}
  store.tokens = {"B": "t1"}

  with pytest.raises(FanoutError) as excinfo:
    await service.handle_message_created(_message())

  assert excinfo.value.stage is FanoutStage.DISPATCH_PUSH
  assert isinstance(excinfo.value.__cause__, PushGatewayError)
  assert store.notified_user_ids() == ["B"]
  assert len(push_gateway.calls) == 1


@pytest.mark.anyio
async def test_token_lookup_failure_aborts_before_any_write(service, store, push_gateway):
  store.members = {"C": ["A", "B", "D"]}
  store.tokens = {"D": "t-d"}
  store.failing_token_lookups = {"B"}

  with pytest.raises(FanoutError) as excinfo:
    await service.handle_message_created(_message())

  assert excinfo.value.stage is FanoutStage.RESOLVE_TOKENS
  assert store.notifications == {}
  assert push_gateway.calls == []


@pytest.mark.anyio
async def test_member_lookup_failure_is_reported_with_stage(service, store, push_gateway):
  store.list_member_ids = AsyncMock(side_effect=RuntimeError("deadline exceeded"))

  with pytest.raises(FanoutError) as excinfo:
    await service.handle_message_created(_message())

  assert excinfo.value.stage is FanoutStage.RESOLVE_MEMBERS
  assert excinfo.value.community_id == "C"
  assert push_gateway.calls == []


@pytest.mark.anyio
async def test_redelivered_event_does_not_duplicate_notifications(service, store):
  store.members = {"C": ["A", "B", "D"]}

  first = await service.handle_message_created(_message())
  second = await service.handle_message_created(_message())

  assert first.notifications_created == 2
  assert second.notifications_created == 0
  assert sorted(store.notifications) == ["m1_B", "m1_D"]


@pytest.mark.anyio
async def test_redelivery_duplicates_when_idempotent_ids_are_disabled(store, push_gateway):
  service = MessageNotificationService(store=store, push_gateway=push_gateway, idempotent_notifications=False)
  store.members = {"C": ["A", "B"]}

  await service.handle_message_created(_message())
  await service.handle_message_created(_message())

  assert store.notified_user_ids() == ["B", "B"]


@pytest.mark.anyio
async def test_messages_without_id_use_generated_notification_ids(service, store):
  store.members = {"C": ["A", "B"]}

  await service.handle_message_created(_message(message_id=None))

  assert list(store.notifications) == ["auto-1"]


@pytest.mark.anyio
async def test_token_lookups_respect_concurrency_limit(store, push_gateway):
  in_flight = {"current": 0, "peak": 0}

  async def _slow_lookup(user_id: str) -> DeliveryToken:
    in_flight["current"] += 1
    in_flight["peak"] = max(in_flight["peak"], in_flight["current"])
    await asyncio.sleep(0.01)
    in_flight["current"] -= 1
    return DeliveryToken(user_id=user_id, token=f"t-{user_id}")

  store.get_delivery_token = _slow_lookup
  store.members = {"C": ["A", "B", "D", "E", "F", "G", "H"]}
  service = MessageNotificationService(store=store, push_gateway=push_gateway, concurrency=2)

  result = await service.handle_message_created(_message())

  assert in_flight["peak"] == 2
  assert result.token_count == 6
  assert sorted(push_gateway.calls[0].tokens) == ["t-B", "t-D", "t-E", "t-F", "t-G", "t-H"]


def test_service_rejects_non_positive_concurrency(store, push_gateway):
  with pytest.raises(ValueError):
    MessageNotificationService(store=store, push_gateway=push_gateway, concurrency=0)
