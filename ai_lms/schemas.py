"""
Domain schemas

Every collection is persisted as a JSON list of these models, dumped by alias
so the stored keys stay camelCase (teacherId, enrolledStudentIds, submittedAt).

- User, Course (-> Module -> Assignment), Submission: stored entities
- ManualCourseData, SubmissionDraft: input shapes without ids
- GeneratedCourse, Evaluation, PerformanceSummary: structured AI replies
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class UserRole(str, Enum):
    STUDENT = "Student"
    TEACHER = "Teacher"
    ADMINISTRATOR = "Administrator"


def for_role(role, mapping):
    """Look up `role` in a mapping that must name every UserRole."""
    missing = set(UserRole) - set(mapping)
    if missing:
        raise KeyError(f"role mapping is missing {sorted(r.value for r in missing)}")
    return mapping[UserRole(role)]


class LmsModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict:
        return self.model_dump(by_alias=True)


class User(LmsModel):
    """Users collection schema"""
    id: str
    username: str = Field(..., description="Unique, compared case-insensitively")
    password: str = Field(..., description="Stored and compared as plaintext")
    role: UserRole


class Assignment(LmsModel):
    id: str
    title: str
    prompt: str


class Module(LmsModel):
    id: str
    title: str
    description: str = ""
    content: str = ""
    assignments: List[Assignment] = Field(default_factory=list)


class Course(LmsModel):
    """Courses collection schema"""
    id: str
    title: str
    description: str = ""
    teacher_id: str = Field(..., description="User id of the owning teacher")
    modules: List[Module] = Field(default_factory=list)
    enrolled_student_ids: List[str] = Field(default_factory=list)

    def all_assignments(self) -> List[Assignment]:
        return [a for m in self.modules for a in m.assignments]

    def find_assignment(self, assignment_id: str) -> Optional[Assignment]:
        return next((a for a in self.all_assignments() if a.id == assignment_id), None)

    def is_enrolled(self, user_id: str) -> bool:
        return user_id in self.enrolled_student_ids


class Submission(LmsModel):
    """Submissions collection schema"""
    id: str
    assignment_id: str
    student_id: str
    course_id: str
    teacher_id: str = Field(..., description="Copied from the course at submission time")
    content: str
    grade: Optional[int] = Field(None, ge=0, le=100)
    feedback: Optional[str] = None
    submitted_at: datetime

    @property
    def is_graded(self) -> bool:
        return self.grade is not None


# ---------- Input shapes ----------

class AssignmentDraft(LmsModel):
    title: str
    prompt: str


class ModuleDraft(LmsModel):
    title: str
    description: str = ""
    content: str = ""
    assignments: List[AssignmentDraft] = Field(default_factory=list)


class ManualCourseData(LmsModel):
    title: str
    description: str = ""
    modules: List[ModuleDraft] = Field(default_factory=list)


class SubmissionDraft(LmsModel):
    assignment_id: str
    student_id: str
    course_id: str
    content: str


# ---------- Structured AI replies ----------

class GeneratedCourse(ManualCourseData):
    """Course structure returned by the curriculum prompt. Same shape as a manual draft."""
    pass


class Evaluation(LmsModel):
    grade: int = Field(..., ge=0, le=100)
    feedback: str


class PerformanceSummary(LmsModel):
    summary: str
    performance: str = Field(..., description="Good | Average | Poor, or N/A when nothing is graded")
