"""Minimal demonstration of the chat service."""

import asyncio
import os

from chatio_core import create_service


async def main():
    service = create_service()
    provider = os.getenv("CHATIO_DEMO_PROVIDER", "local")
    key = os.getenv("CHATIO_DEMO_API_KEY", "")

    result = await service.test_connection(provider, {"apiKey": key})
    print("Connection:", result.to_dict())
    if not result.success:
        return

    settings = await service.resolve_settings(provider, api_key=key or None)
    question = "请用一句话介绍你自己"
    reply = await service.send_message([{"role": "user", "content": question}], settings)
    print("User:", question)
    print("Assistant:", reply.content)


if __name__ == "__main__":
    asyncio.run(main())
