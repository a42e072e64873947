"""
Example 02: Quiz Scoring and Translation
========================================

Demonstrates the stateless callables:
- Loading an answer key from CSV
- Tallying two quiz submissions into the leaderboard
- Translating an assistant reply

Run without an API key (translation needs a real model for a meaningful reply):
    ATOMCHAT_MOCK_LLM=1 uv run python examples/02_quiz_and_translate.py
"""

import asyncio
import sys
import tempfile
from pathlib import Path

# Add project root to path when running directly
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


async def main() -> None:
    from atomchat import (
        AnswerKey,
        AtomchatConfig,
        AuthInfo,
        CallableError,
        CallContext,
        Functions,
        StoreConfig,
        StorePool,
    )

    print("=== Atomchat Quiz Example ===\n")

    with tempfile.TemporaryDirectory() as tmp:
        key_path = Path(tmp) / "answers.csv"
        key_path.write_text("question_id,answer\n1,H2O\n2,NaCl\n3,6.022e23\n", encoding="utf-8")

        config = AtomchatConfig(store=StoreConfig(db_path=str(Path(tmp) / "quiz.db")))
        pool = StorePool()
        functions = await Functions.create(
            config, answer_key=AnswerKey.from_csv(key_path), pool=pool
        )
        caller = CallContext(auth=AuthInfo(uid="user_quiz"))

        try:
            for answers in (
                [{"questionId": 1, "answer": "h2o"}, {"questionId": 2, "answer": "KCl"}],
                [{"questionId": 3, "answer": "6.022e23"}],
            ):
                result = await functions.tally_answers(
                    {"answers": answers, "displayName": "Quiz Taker"}, caller
                )
                print(f"Earned {result['pointsEarned']}, total {result['totalPoints']}")

            try:
                translated = await functions.translate(
                    {"text": "Water is polar.", "targetLanguage": "fr"}, caller
                )
                print(f"\nTranslated: {translated}")
            except CallableError as exc:
                # The mock model does not answer in JSON
                print(f"\nTranslation unavailable: {exc.to_dict()}")
        finally:
            await functions.close()
            await pool.close_all()


if __name__ == "__main__":
    asyncio.run(main())
