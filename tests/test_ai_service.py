"""
Unit tests for the AI service.

The Groq client is patched, so no network calls are made.
"""
import json
from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest

from ai_lms import ai_service
from ai_lms.exceptions import AIServiceError
from ai_lms.schemas import Assignment, Course, Module, Submission


def _reply(content):
    completion = MagicMock()
    completion.choices[0].message.content = content
    return completion


@pytest.fixture
def groq(monkeypatch):
    """Patched Groq class; groq.return_value is the client."""
    monkeypatch.setenv("GROQ_API_KEY", "test-key")
    monkeypatch.delenv("GROQ_MODEL", raising=False)
    with patch("ai_lms.ai_service.Groq") as mock_groq:
        yield mock_groq


def _create(groq):
    return groq.return_value.chat.completions.create


def _course():
    return Course(
        id="course-1",
        title="Python Basics",
        description="Start here.",
        teacher_id="teacher-01",
        modules=[Module(
            id="mod-1",
            title="Variables",
            description="Names for values",
            content="A variable binds a name to an object.",
            assignments=[Assignment(id="ass-1", title="Swap", prompt="Swap two variables.")],
        )],
    )


def _submission(grade=None):
    return Submission(
        id="sub-1", assignment_id="ass-1", student_id="student-01", course_id="course-1",
        teacher_id="teacher-01", content="a, b = b, a", grade=grade, submitted_at=datetime(2024, 5, 1),
    )


# ---------------------------------------------------------------------------
# Client configuration
# ---------------------------------------------------------------------------

class TestClient:
    def test_missing_api_key_becomes_service_error(self, monkeypatch):
        monkeypatch.delenv("GROQ_API_KEY", raising=False)

        with pytest.raises(AIServiceError, match="Failed to get a response from the AI study assistant."):
            ai_service.get_ai_study_help(_course(), "What is a variable?")

    def test_model_override(self, groq, monkeypatch):
        monkeypatch.setenv("GROQ_MODEL", "custom-model")
        _create(groq).return_value = _reply("Answer")

        ai_service.get_ai_study_help(_course(), "q")

        assert _create(groq).call_args.kwargs["model"] == "custom-model"

    def test_default_model(self, groq):
        _create(groq).return_value = _reply("Answer")
        ai_service.get_ai_study_help(_course(), "q")
        assert _create(groq).call_args.kwargs["model"] == ai_service.DEFAULT_MODEL


# ---------------------------------------------------------------------------
# Structured calls
# ---------------------------------------------------------------------------

class TestGenerateCourse:
    def test_parses_course_structure(self, groq):
        _create(groq).return_value = _reply(json.dumps({
            "title": "Sourdough",
            "description": "Bake bread.",
            "modules": [{
                "title": "Starter",
                "description": "Feed it",
                "content": "Flour and water.",
                "assignments": [{"title": "Make a starter", "prompt": "Describe day one."}],
            }],
        }))

        course = ai_service.generate_course("sourdough")

        assert course.title == "Sourdough"
        assert course.modules[0].assignments[0].title == "Make a starter"
        kwargs = _create(groq).call_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}
        assert "sourdough" in kwargs["messages"][0]["content"]

    def test_malformed_json(self, groq):
        _create(groq).return_value = _reply("Sure! Here is your course:")

        with pytest.raises(AIServiceError) as exc_info:
            ai_service.generate_course("sourdough")
        assert str(exc_info.value) == "Failed to generate course content. Please check the topic and try again."

    def test_missing_required_field(self, groq):
        _create(groq).return_value = _reply('{"description": "no title"}')

        with pytest.raises(AIServiceError, match="Failed to generate course content"):
            ai_service.generate_course("sourdough")

    def test_transport_error(self, groq):
        _create(groq).side_effect = ConnectionError("boom")

        with pytest.raises(AIServiceError) as exc_info:
            ai_service.generate_course("sourdough")
        assert isinstance(exc_info.value.original_error, ConnectionError)


class TestEvaluateSubmission:
    def test_returns_grade_and_feedback(self, groq):
        _create(groq).return_value = _reply('{"grade": 85, "feedback": "Good work"}')

        evaluation = ai_service.evaluate_submission(_course().modules[0].assignments[0], _submission())

        assert (evaluation.grade, evaluation.feedback) == (85, "Good work")
        prompt = _create(groq).call_args.kwargs["messages"][0]["content"]
        assert "Swap two variables." in prompt
        assert "a, b = b, a" in prompt

    @pytest.mark.parametrize("reply", [
        '{"grade": 140, "feedback": "too generous"}',
        '{"grade": -1, "feedback": "harsh"}',
        '{"feedback": "no grade"}',
        '[85, "Good work"]',
    ])
    def test_invalid_replies(self, groq, reply):
        _create(groq).return_value = _reply(reply)

        with pytest.raises(AIServiceError, match="Failed to evaluate submission."):
            ai_service.evaluate_submission(_course().modules[0].assignments[0], _submission())


class TestAdminSummary:
    def test_no_grades_answers_locally(self, groq):
        summary = ai_service.generate_admin_performance_summary("sam", 3, None)

        assert summary.summary == "sam is enrolled in 3 course(s) but has no graded assignments yet."
        assert summary.performance == "N/A"
        groq.assert_not_called()

    def test_label_comes_from_reply(self, groq):
        _create(groq).return_value = _reply('{"summary": "Sam is thriving.", "performance": "Good"}')

        summary = ai_service.generate_admin_performance_summary("sam", 2, 91)

        assert summary.performance == "Good"
        assert "Average Grade: 91%" in _create(groq).call_args.kwargs["messages"][0]["content"]

    def test_failure_message(self, groq):
        _create(groq).return_value = _reply("not json")

        with pytest.raises(AIServiceError, match="Failed to generate AI summary."):
            ai_service.generate_admin_performance_summary("sam", 2, 91)


# ---------------------------------------------------------------------------
# Narrative calls
# ---------------------------------------------------------------------------

class TestProgressReport:
    def test_nothing_graded_skips_the_call(self, groq):
        report = ai_service.generate_progress_report("sam", [_course()], [_submission()])

        assert report == ai_service.NO_GRADED_REPORT
        groq.assert_not_called()

    def test_lists_graded_work(self, groq):
        _create(groq).return_value = _reply("Keep going.")

        report = ai_service.generate_progress_report("sam", [_course()], [_submission(grade=72)])

        assert report == "Keep going."
        kwargs = _create(groq).call_args.kwargs
        assert "- Course: Python Basics, Assignment: Swap, Grade: 72/100" in kwargs["messages"][0]["content"]
        assert "response_format" not in kwargs

    def test_unknown_course_is_labelled(self, groq):
        _create(groq).return_value = _reply("ok")

        ai_service.generate_progress_report("sam", [], [_submission(grade=50)])

        assert "- Course: N/A, Assignment: N/A, Grade: 50/100" in _create(groq).call_args.kwargs["messages"][0]["content"]

    def test_failure_message(self, groq):
        _create(groq).side_effect = RuntimeError("rate limited")

        with pytest.raises(AIServiceError, match="Failed to generate progress report."):
            ai_service.generate_progress_report("sam", [_course()], [_submission(grade=72)])


class TestStudyHelp:
    def test_prompt_carries_course_context(self, groq):
        _create(groq).return_value = _reply("A variable binds a name.")

        answer = ai_service.get_ai_study_help(_course(), "What is a variable?")

        assert answer == "A variable binds a name."
        prompt = _create(groq).call_args.kwargs["messages"][0]["content"]
        assert "Module Title: Variables" in prompt
        assert "A variable binds a name to an object." in prompt
        assert "- Assignment: Swap" in prompt
        assert 'Student\'s Question: "What is a variable?"' in prompt
