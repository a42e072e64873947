"""
Example 01: Basic Chat
======================

Demonstrates the turn lifecycle end to end through the callable surface:
- Building every collaborator with Functions.create()
- Sending text turns for one authenticated user
- Inspecting the persisted turns and the session rollup counter
- Seeing a failed turn resolve to the apology text

Run without an API key:
    ATOMCHAT_MOCK_LLM=1 uv run python examples/01_basic_chat.py

Run with a real LLM (set your API key first):
    OPENAI_API_KEY=sk-... uv run python examples/01_basic_chat.py
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path when running directly
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


async def main() -> None:
    from atomchat import (
        AtomchatConfig,
        AuthInfo,
        CallableError,
        CallContext,
        Functions,
        StoreConfig,
        StorePool,
        TurnStore,
        configure_logging,
    )

    print("=== Atomchat Basic Chat Example ===\n")

    config = AtomchatConfig(store=StoreConfig(db_path="/tmp/atomchat_example_01.db"))
    configure_logging(config.logging.model_copy(update={"format": "console", "level": "WARNING"}))

    pool = StorePool()
    functions = await Functions.create(config, pool=pool)
    caller = CallContext(auth=AuthInfo(uid="user_example_01", token={"name": "Ada"}))

    questions = [
        "What is a mole?",
        "How many atoms are in one mole of carbon?",
        "Why is water a polar molecule?",
    ]
    try:
        for i, question in enumerate(questions, 1):
            print(f"Turn {i}: {question}")
            result = await functions.process_turn({"message": question}, caller)
            print(f"  Assistant turn: {result['messageId']}\n")

        # An empty message is rejected before anything is written
        try:
            await functions.process_turn({"message": "  "}, caller)
        except CallableError as exc:
            print(f"Rejected: {exc.to_dict()}\n")

        async with TurnStore(config.store, pool=pool) as store:
            turns = await store.list_turns("user_example_01")
            print(f"Turns stored: {len(turns)}")
            for turn in turns[-4:]:
                print(f"  [{turn.role:9}] {turn.status:9} {turn.content[:70]}")
            session = await store.get_session("user_example_01")
            if session is not None:
                print(f"\nSession rollup total_turns: {session.total_turns}")
    finally:
        await functions.on_user_deleted("user_example_01")
        await functions.close()
        await pool.close_all()

    print("\nAccount data removed.")


if __name__ == "__main__":
    asyncio.run(main())
