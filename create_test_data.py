#!/usr/bin/env python3

import asyncio

from messenger.auth import create_access_token
from messenger.database import create_tables, AsyncSessionLocal
from messenger.repositories.user_repository import UserRepository
from messenger.services.conversation_service import ConversationService

USERS = [
    {"username": "alice", "email": "alice@example.com", "is_verified": True},
    {"username": "bob", "email": "bob@example.com"},
    {"username": "charlie", "email": "charlie@example.com"},
]


async def create_test_users():
    async with AsyncSessionLocal() as db:
        user_repo = UserRepository(db)

        created_users = []
        for user_data in USERS:
            existing_user = await user_repo.get_by_username(user_data["username"])
            if not existing_user:
                user = await user_repo.create(**user_data)
                created_users.append(user)
                print(f"Created user: {user.username} (ID: {user.id})")
            else:
                created_users.append(existing_user)
                print(f"User {user_data['username']} exists (ID: {existing_user.id})")

        await db.commit()
        return created_users


async def play_conversation(users):
    alice, bob = users[0], users[1]

    async with AsyncSessionLocal() as db:
        service = ConversationService(db)

        conversation, _ = await service.get_or_create_conversation(alice.id, bob.id)
        print(f"Conversation between {alice.username} and {bob.username} (ID: {conversation.id})")

        await service.send_message(alice.id, conversation.id, "hi")
        await service.send_message(bob.id, conversation.id, "hey")
        result = await service.mark_read(alice.id, conversation.id)
        print(f"{alice.username} marked {result.marked} message(s) read")

        for summary in await service.list_conversations(bob.id):
            print(f"{bob.username}: conversation {summary.conversation.id} with "
                  f"{summary.other_user.username}, unread {summary.unread_count}")

        history = await service.get_messages(alice.id, conversation.id)
        print("History:", [message.content for message in history.messages])


async def main():
    await create_tables()
    users = await create_test_users()
    await play_conversation(users)

    for user in users:
        print(f"Token for {user.username}: {create_access_token(user.id)}")


if __name__ == "__main__":
    asyncio.run(main())
