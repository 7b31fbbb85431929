import os
import json
import logging

from groq import Groq
from pydantic import ValidationError as SchemaError

from ai_lms.exceptions import AIServiceError
from ai_lms.schemas import Evaluation, GeneratedCourse, PerformanceSummary

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "llama-3.3-70b-versatile"

NO_GRADED_REPORT = "No graded assignments available to generate a report."


def get_groq_client():
    api_key = os.environ.get("GROQ_API_KEY")
    if not api_key: return None
    return Groq(api_key=api_key)


def get_model():
    return os.environ.get("GROQ_MODEL", DEFAULT_MODEL)


def _complete(prompt, json_mode=False):
    """Single blocking round trip. Returns the raw reply text."""
    client = get_groq_client()
    if not client:
        raise RuntimeError("GROQ_API_KEY is not configured")
    kwargs = {}
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}
    completion = client.chat.completions.create(
        messages=[{"role": "user", "content": prompt}],
        model=get_model(),
        **kwargs,
    )
    return completion.choices[0].message.content


def _structured(prompt, schema, failure_message):
    try:
        data = json.loads(_complete(prompt, json_mode=True).strip())
        return schema.model_validate(data)
    except (SchemaError, ValueError, TypeError) as e:
        logger.error(f"Malformed {schema.__name__} reply: {e}")
        raise AIServiceError(failure_message, e)
    except Exception as e:
        logger.exception(f"AI call for {schema.__name__} failed")
        raise AIServiceError(failure_message, e)


def _narrative(prompt, failure_message):
    try:
        return _complete(prompt)
    except Exception as e:
        logger.exception("AI narrative call failed")
        raise AIServiceError(failure_message, e)


def generate_course(topic):
    prompt = f"""
    You are a curriculum designer for an online Learning Management System.
    Build a complete, ready-to-teach course about "{topic}".
    Give it a short engaging title and a 1-2 paragraph description.
    Provide 3 to 5 modules. Each module has a title, a brief description, a few
    paragraphs of learning content, and exactly one assignment with a title and
    a detailed prompt.
    Return STRICT JSON: {{"title": "...", "description": "...", "modules": [
      {{"title": "...", "description": "...", "content": "...",
        "assignments": [{{"title": "...", "prompt": "..."}}]}}]}}
    """
    return _structured(
        prompt, GeneratedCourse,
        "Failed to generate course content. Please check the topic and try again.",
    )


def evaluate_submission(assignment, submission):
    """
    Grades one submission against its assignment prompt.
    Returns an Evaluation with a 0-100 grade and 2-3 sentences of feedback.
    """
    prompt = f"""
    You are a fair teaching assistant. Evaluate a student's submission.
    Assignment Title: "{assignment.title}"
    Assignment Prompt: "{assignment.prompt}"
    Student Submission:
    ---
    {submission.content}
    ---
    Give a numerical grade out of 100 and 2-3 sentences of constructive,
    encouraging feedback that names specific areas to improve.
    Return STRICT JSON: {{"grade": 0-100, "feedback": "..."}}
    """
    return _structured(
        prompt, Evaluation,
        "Failed to evaluate submission. The AI evaluator might be temporarily unavailable.",
    )


def generate_progress_report(student_name, courses, submissions):
    graded = [s for s in submissions if s.grade is not None]
    if not graded:
        return NO_GRADED_REPORT

    by_id = {c.id: c for c in courses}
    lines = []
    for s in graded:
        course = by_id.get(s.course_id)
        assignment = course.find_assignment(s.assignment_id) if course else None
        lines.append(
            f"- Course: {course.title if course else 'N/A'}, "
            f"Assignment: {assignment.title if assignment else 'N/A'}, Grade: {s.grade}/100"
        )
    graded_lines = "\n".join(lines)

    prompt = f"""
    You are an encouraging academic advisor. Write a progress report for a
    student named {student_name}.
    Their graded assignments:
    {graded_lines}
    Write two paragraphs. First highlight strengths and strong results. Then
    gently point out courses or topics where they may be struggling and
    suggest one positive next step. Keep a supportive tone.
    """
    return _narrative(prompt, "Failed to generate progress report.")


def generate_admin_performance_summary(student_name, enrolled_count, average_grade):
    if average_grade is None:
        return PerformanceSummary(
            summary=f"{student_name} is enrolled in {enrolled_count} course(s) but has no graded assignments yet.",
            performance="N/A",
        )

    prompt = f"""
    You are an administrative academic advisor. Summarise a student in one
    sentence and give a single performance label.
    Student Name: {student_name}
    Number of Enrolled Courses: {enrolled_count}
    Average Grade: {average_grade}%
    Label rule: above 85% is "Good", 60% to 85% inclusive is "Average",
    below 60% is "Poor".
    Return STRICT JSON: {{"summary": "one sentence combining enrollment and grade",
    "performance": "Good" | "Average" | "Poor"}}
    """
    return _structured(prompt, PerformanceSummary, "Failed to generate AI summary.")


def _course_context(course):
    modules = []
    for mod in course.modules:
        assignments = "\n".join(
            f"    - Assignment: {a.title}\n    - Prompt: {a.prompt}" for a in mod.assignments
        )
        modules.append(
            f"---\nModule Title: {mod.title}\nModule Description: {mod.description}\n"
            f"Module Content: {mod.content}\nAssignments:\n{assignments}\n---"
        )
    return (
        f"Course Title: {course.title}\nCourse Description: {course.description}\n\n"
        "Modules:\n" + "\n".join(modules)
    )


def get_ai_study_help(course, question):
    prompt = f"""
    You are a friendly AI study assistant. Answer the student's question using
    ONLY the course context below. If the answer is not in the context, say
    that you cannot answer from the provided material.

    ---COURSE CONTEXT---
    {_course_context(course)}
    ---END COURSE CONTEXT---

    Student's Question: "{question}"
    """
    return _narrative(prompt, "Failed to get a response from the AI study assistant.")
