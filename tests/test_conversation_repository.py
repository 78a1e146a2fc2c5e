import pytest
from sqlalchemy import select

from messenger.exceptions import ConflictError
from messenger.models import Conversation, ParticipantSlot
from messenger.models.base import utcnow
from messenger.repositories.conversation_repository import ConversationRepository
from tests.conftest import ALICE, BOB, CAROL, load_conversation


async def test_find_by_pair_ignores_argument_order(db):
    repo = ConversationRepository(db)
    created = await repo.create(BOB, ALICE)
    await db.commit()

    assert (created.participant_a, created.participant_b) == (ALICE, BOB)
    assert (await repo.find_by_pair(ALICE, BOB)).id == created.id
    assert (await repo.find_by_pair(BOB, ALICE)).id == created.id
    assert await repo.find_by_pair(ALICE, CAROL) is None


async def test_create_duplicate_pair_raises_conflict(db):
    repo = ConversationRepository(db)
    await repo.create(ALICE, BOB)
    await db.commit()

    with pytest.raises(ConflictError):
        await repo.create(BOB, ALICE)

    # session is usable again after the failed insert
    rows = (await db.execute(select(Conversation))).scalars().all()
    assert len(rows) == 1


async def test_new_conversation_starts_with_zero_counters(db):
    repo = ConversationRepository(db)
    conversation = await repo.create(ALICE, BOB)
    await db.commit()

    fresh = await load_conversation(db, conversation.id)
    assert fresh.unread_count_a == 0
    assert fresh.unread_count_b == 0
    assert fresh.last_message_id is None


async def test_increment_and_reset_touch_only_one_counter(db):
    repo = ConversationRepository(db)
    conversation = await repo.create(ALICE, BOB)
    await db.commit()

    await repo.increment_unread(conversation.id, ParticipantSlot.B)
    await repo.increment_unread(conversation.id, ParticipantSlot.B)
    await repo.increment_unread(conversation.id, ParticipantSlot.A)
    await db.commit()

    fresh = await load_conversation(db, conversation.id)
    assert (fresh.unread_count_a, fresh.unread_count_b) == (1, 2)

    await repo.reset_unread(conversation.id, ParticipantSlot.B)
    await db.commit()

    fresh = await load_conversation(db, conversation.id)
    assert (fresh.unread_count_a, fresh.unread_count_b) == (1, 0)


async def test_get_for_participant_hides_conversation_from_outsiders(db):
    repo = ConversationRepository(db)
    conversation = await repo.create(ALICE, BOB)
    await db.commit()

    assert (await repo.get_for_participant(conversation.id, ALICE)).id == conversation.id
    assert (await repo.get_for_participant(conversation.id, BOB)).id == conversation.id
    assert await repo.get_for_participant(conversation.id, CAROL) is None
    assert await repo.get_for_participant(conversation.id + 100, ALICE) is None


async def test_touch_last_message_updates_pointer(db):
    repo = ConversationRepository(db)
    conversation = await repo.create(ALICE, BOB)
    await db.commit()

    await repo.touch_last_message(conversation.id, 42, utcnow())
    await db.commit()

    assert (await load_conversation(db, conversation.id)).last_message_id == 42


async def test_unread_total_sums_own_counters(db):
    repo = ConversationRepository(db)
    with_bob = await repo.create(ALICE, BOB)
    with_carol = await repo.create(CAROL, ALICE)
    await db.commit()

    await repo.increment_unread(with_bob.id, with_bob.slot_of(ALICE))
    await repo.increment_unread(with_bob.id, with_bob.slot_of(BOB))
    await repo.increment_unread(with_carol.id, with_carol.slot_of(ALICE))
    await repo.increment_unread(with_carol.id, with_carol.slot_of(ALICE))
    await db.commit()

    assert await repo.unread_total(ALICE) == 3
    assert await repo.unread_total(BOB) == 1
    assert await repo.unread_total(CAROL) == 0


async def test_unread_total_without_conversations_is_zero(db):
    assert await ConversationRepository(db).unread_total(ALICE) == 0


def test_conversation_participant_helpers():
    conversation = Conversation(id=7, participant_a=ALICE, participant_b=BOB)

    assert conversation.slot_of(ALICE) is ParticipantSlot.A
    assert conversation.slot_of(BOB) is ParticipantSlot.B
    assert conversation.other_participant(ALICE) == BOB
    assert conversation.other_participant(BOB) == ALICE
    with pytest.raises(ValueError):
        conversation.slot_of(CAROL)
