"""Shared test fixtures."""

import pytest


class ScriptedUi:
    """Ui that replays canned answers and records everything shown."""

    def __init__(self, answers: list[str] | None = None) -> None:
        self.answers = list(answers or [])
        self.questions: list[str] = []
        self.messages: list[str] = []

    def ask(self, question: str) -> str:
        self.questions.append(question)
        if not self.answers:
            raise AssertionError(f"Unexpected question: {question}")
        return self.answers.pop(0)

    def say(self, message: str) -> None:
        self.messages.append(message)


@pytest.fixture
def ui():
    """Scripted UI with no answers; tests append to ui.answers."""
    return ScriptedUi()
