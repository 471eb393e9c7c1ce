"""
Arithmetic question generation for the Quick Math Duel engine.
Builds a question and its distractor options for a given difficulty level.
"""
import logging
import random
from typing import List, Optional, Tuple

from .models import Question, RoundSettings

logger = logging.getLogger(__name__)

ADD = "+"
SUBTRACT = "-"
MULTIPLY = "×"
DIVIDE = "÷"

OPTION_COUNT = 3
DISTRACTOR_SPREAD = 10


class QuestionGenerator:
    """
    Generates arithmetic questions whose difficulty grows with the level.

    The random source is injected so tests can substitute a seeded
    ``random.Random`` (or any object offering ``randint``, ``choice`` and
    ``shuffle``) and assert exact outputs.
    """

    def __init__(self, rng: Optional[random.Random] = None, settings: Optional[RoundSettings] = None):
        """
        Initialize the generator.

        Args:
            rng: Random source, defaults to a fresh ``random.Random``
            settings: Round settings supplying the level cap and retry cap
        """
        self.rng = rng if rng is not None else random.Random()
        self.settings = settings or RoundSettings()

    @staticmethod
    def base_range(level: int) -> int:
        """Upper bound for addition and subtraction operands."""
        return 10 + 5 * level

    @staticmethod
    def multiply_range(level: int) -> int:
        """Upper bound for multiplication operands."""
        return 5 + 2 * level

    @staticmethod
    def operations_for_level(level: int) -> List[str]:
        """Operations available at a difficulty level."""
        operations = [ADD, SUBTRACT, MULTIPLY]
        if level >= 2:
            operations.append(DIVIDE)
        return operations

    def generate(self, difficulty_level: int, score: int = 0) -> Question:
        """
        Generate a question for the given difficulty level.

        Args:
            difficulty_level: Level in 0..max level; out of range values are clamped
            score: Current score, recorded for logging only

        Returns:
            A new Question with a shuffled option set
        """
        level = max(0, min(difficulty_level, self.settings.max_difficulty_level))
        operation = self.rng.choice(self.operations_for_level(level))

        if operation == ADD:
            a, b = self._draw_pair(self.base_range(level))
            correct, operands = a + b, (a, b)
        elif operation == SUBTRACT:
            a, b = self._draw_pair(self.base_range(level))
            larger, smaller = max(a, b), min(a, b)
            correct, operands = larger - smaller, (larger, smaller)
        elif operation == MULTIPLY:
            a, b = self._draw_pair(self.multiply_range(level))
            correct, operands = a * b, (a, b)
        else:
            divisor = self.rng.randint(2, 10)
            quotient = self.rng.randint(2, 15)
            correct, operands = quotient, (divisor * quotient, divisor)

        text = f"{operands[0]} {operation} {operands[1]}"
        options = self.build_options(correct)

        logger.debug(
            f"Generated question '{text}' = {correct} at level {level} (score {score})",
            extra={
                'event_type': 'question_generated',
                'difficulty_level': level,
                'operation': operation,
                'score': score
            }
        )
        return Question(
            text=text,
            correct_answer=correct,
            options=tuple(options),
            operation=operation,
            operands=operands
        )

    def build_options(self, correct: int) -> List[int]:
        """
        Build the shuffled option list for a correct answer.

        Candidates are drawn from ``correct +/- 10`` and accepted when
        positive and not already present. Draws are capped; after the cap
        the smallest untaken integers above ``correct`` fill the remaining
        slots so generation always terminates.

        Args:
            correct: The correct answer

        Returns:
            List of three distinct values containing ``correct`` once
        """
        options = [correct]
        attempts = 0
        while len(options) < OPTION_COUNT and attempts < self.settings.max_distractor_attempts:
            attempts += 1
            candidate = correct + self.rng.randint(-DISTRACTOR_SPREAD, DISTRACTOR_SPREAD)
            if candidate > 0 and candidate not in options:
                options.append(candidate)

        if len(options) < OPTION_COUNT:
            logger.warning(
                f"Distractor draws exhausted after {attempts} attempts for answer {correct}, using fallback values"
            )
            candidate = correct + 1
            while len(options) < OPTION_COUNT:
                if candidate > 0 and candidate not in options:
                    options.append(candidate)
                candidate += 1

        self.rng.shuffle(options)
        return options

    def _draw_pair(self, upper: int) -> Tuple[int, int]:
        return self.rng.randint(1, upper), self.rng.randint(1, upper)
