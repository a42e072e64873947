"""Quiz scoring."""

from atomchat.scoring.tally import AnswerKey, ScoreTally

__all__ = ["AnswerKey", "ScoreTally"]
