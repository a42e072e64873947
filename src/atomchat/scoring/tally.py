"""Quiz answer grading and leaderboard updates."""

from __future__ import annotations

import csv
from collections.abc import Iterable, Mapping
from pathlib import Path

import structlog

from atomchat.errors import InvalidArgumentError, UnauthenticatedError
from atomchat.events.bus import AtomchatEvent, EventBus
from atomchat.models.config import TallyConfig
from atomchat.models.turn import AnswerSubmission, TallyResult
from atomchat.store.turns import TurnStore

ANONYMOUS = "Anonymous"


def _normalise(answer: str) -> str:
    return answer.strip().casefold()


class AnswerKey:
    """Static mapping of question ID to its correct answer."""

    def __init__(self, solutions: Mapping[str, str]) -> None:
        self._solutions = {str(qid).strip(): _normalise(ans) for qid, ans in solutions.items()}

    @classmethod
    def from_mapping(cls, solutions: Mapping[str | int, str]) -> AnswerKey:
        return cls({str(qid): ans for qid, ans in solutions.items()})

    @classmethod
    def from_csv(cls, path: str | Path) -> AnswerKey:
        """
        Load an answer key from a CSV file with a ``question_id,answer`` header.

        Raises:
            ValueError: If the header lacks either column.
        """
        with Path(path).expanduser().open(newline="", encoding="utf-8") as fh:
            reader = csv.DictReader(fh)
            fields = set(reader.fieldnames or [])
            if not {"question_id", "answer"} <= fields:
                raise ValueError(
                    f"Answer key {str(path)!r} must have question_id and answer columns"
                )
            return cls({row["question_id"]: row["answer"] for row in reader})

    def __len__(self) -> int:
        return len(self._solutions)

    def __contains__(self, question_id: object) -> bool:
        return str(question_id) in self._solutions

    def is_correct(self, question_id: str, answer: str) -> bool:
        """Compare ignoring surrounding whitespace and case. Unknown questions are wrong."""
        solution = self._solutions.get(str(question_id).strip())
        return solution is not None and solution == _normalise(answer)


class ScoreTally:
    """
    Grades a batch of answers and credits the points to the user's leaderboard row.

    The read of the current score and the write of the new one happen in a
    single store transaction, so concurrent submissions from one user never
    lose each other's points.
    """

    def __init__(
        self,
        store: TurnStore,
        answer_key: AnswerKey,
        config: TallyConfig | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self._store = store
        self._answer_key = answer_key
        self._config = config or TallyConfig()
        self._event_bus = event_bus
        self._logger = structlog.get_logger("atomchat.tally")

    def score(self, answers: Iterable[AnswerSubmission]) -> tuple[int, int]:
        """
        Return ``(points_earned, correct_count)`` without touching the store.

        Each question is graded once; when a question ID is repeated, its last
        answer counts.
        """
        latest = {a.question_id.strip(): a.answer for a in answers}
        correct = sum(
            1 for qid, answer in latest.items() if self._answer_key.is_correct(qid, answer)
        )
        return correct * self._config.points_per_correct, correct

    async def tally(
        self,
        user_id: str,
        answers: list[AnswerSubmission],
        *,
        display_name: str | None = None,
        auth_display_name: str | None = None,
    ) -> TallyResult:
        """
        Grade ``answers`` and add the earned points to ``user_id``'s score.

        Args:
            user_id: The authenticated caller's ID.
            answers: Submitted answers.
            display_name: Caller-supplied fallback name.
            auth_display_name: Name from the verified identity; preferred when set.

        Raises:
            UnauthenticatedError: If ``user_id`` is empty.
            InvalidArgumentError: If ``answers`` is empty.
        """
        if not user_id:
            raise UnauthenticatedError("The function must be called while authenticated.")
        if not answers:
            raise InvalidArgumentError("The function must be called with answers.")

        points, correct = self.score(answers)
        name = (auth_display_name or "").strip() or (display_name or "").strip() or ANONYMOUS

        entry = await self._store.award_points(user_id, points, name)
        self._logger.info(
            "answers_tallied",
            user_id=user_id,
            submitted=len(answers),
            correct=correct,
            points_earned=points,
        )
        if self._event_bus is not None:
            self._event_bus.publish(
                AtomchatEvent.POINTS_AWARDED,
                {"user_id": user_id, "points_earned": points, "total_points": entry.points},
            )
        return TallyResult(
            user_id=user_id,
            points_earned=points,
            correct_count=correct,
            total_points=entry.points,
            display_name=name,
        )
