"""
Pytest configuration and fixtures for llm_jsonrepair tests.
"""
import pytest


class RecordingSink:
    """Diagnostic sink that keeps every formatted debug message."""

    def __init__(self):
        self.messages = []

    def debug(self, msg, *args):
        self.messages.append(msg % args if args else msg)

    def contains(self, fragment):
        return any(fragment in m for m in self.messages)


@pytest.fixture
def sink():
    """Fresh recording sink per test."""
    return RecordingSink()


@pytest.fixture
def llm_outputs():
    """Broken JSON the way chat models tend to emit it, with the expected recovery."""
    return [
        (
            '{"name": "John Doe", "age": 30, "courses": ["Math", "Science"',
            {"name": "John Doe", "age": 30, "courses": ["Math", "Science"]},
        ),
        (
            '{name: "Alice", age: 30, active: true}',
            {"name": "Alice", "age": 30, "active": True},
        ),
        (
            '["string1", item2, 3, "item4',
            ["string1", "item2", 3, "item4"],
        ),
        (
            'Here is the JSON: {"result": "success", "code": 200',
            {"result": "success", "code": 200},
        ),
    ]
