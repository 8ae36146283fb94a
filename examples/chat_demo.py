"""Minimal demonstration of the streaming chat pipeline."""

import asyncio

from chat_core import ChatService, create_store


async def main() -> None:
    service = ChatService(store=create_store())
    question = "What features does Smart Shelf have?"
    reply = await service.send(question)
    print("User:", question)
    print("Assistant:", reply.content)


if __name__ == "__main__":
    asyncio.run(main())
