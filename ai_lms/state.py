"""
Domain state container.

LmsState owns the users, courses and submissions collections plus the session
user for one storage namespace. Every mutation goes through a named operation
that computes the new whole collection, swaps it in and mirrors it to the
PersistentStore. Views only read.
"""
import logging
import random
import threading
import time
import uuid
from collections import OrderedDict
from datetime import datetime

from pydantic import ValidationError as SchemaError

from ai_lms import ai_service
from ai_lms.exceptions import (
    AuthenticationError,
    CourseNotFoundError,
    DuplicateUsernameError,
    ValidationError,
)
from ai_lms.schemas import (
    Assignment,
    Course,
    ManualCourseData,
    Module,
    Submission,
    SubmissionDraft,
    User,
    UserRole,
    for_role,
)
from ai_lms.storage import PersistentStore

logger = logging.getLogger(__name__)

SESSION_KEY = "lms_loggedInUser"
USERS_KEY = "lms_users"
COURSES_KEY = "lms_courses"
SUBMISSIONS_KEY = "lms_submissions"

SESSION_TTL_MS = 2 * 24 * 60 * 60 * 1000
STATE_CACHE_SIZE = 1000

DEFAULT_USERS = [
    {"id": "admin-01", "username": "admin", "role": "Administrator", "password": "password"},
    {"id": "teacher-01", "username": "teacher", "role": "Teacher", "password": "password"},
    {"id": "student-01", "username": "student", "role": "Student", "password": "password"},
]


def new_id(prefix, unique=True):
    stamp = f"{prefix}-{int(time.time() * 1000)}"
    return f"{stamp}-{uuid.uuid4().hex[:6]}" if unique else stamp


def _nested_id(prefix):
    return f"{prefix}-{int(time.time() * 1000)}-{random.random()}"


def assignment_status(submission):
    """Badge text for a student's assignment."""
    if submission is None:
        return None
    if submission.is_graded:
        return f"Graded: {submission.grade}/100"
    return "Submitted"


def _round_half_up(value):
    return int(value + 0.5)


class LmsState:

    def __init__(self, store: PersistentStore, ai=ai_service, session_ttl_ms=SESSION_TTL_MS):
        self.store = store
        self.ai = ai
        self.session_ttl_ms = session_ttl_ms
        self.notifications = []
        self._lock = threading.RLock()
        self.hydrate()

    # ---------- persistence ----------

    def _load_models(self, key, model, default):
        raw = self.store.load(key, default)
        try:
            return [model.model_validate(item) for item in raw]
        except (SchemaError, TypeError) as e:
            logger.error(f"Stored {key} does not match {model.__name__}, using default: {e}")
            self.store.remove(key)
            return [model.model_validate(item) for item in default]

    def hydrate(self):
        with self._lock:
            self.users = self._load_models(USERS_KEY, User, DEFAULT_USERS)
            self.courses = self._load_models(COURSES_KEY, Course, [])
            self.submissions = self._load_models(SUBMISSIONS_KEY, Submission, [])

            value, expiry = self.store.load_entry(SESSION_KEY, None, expiry_ms=self.session_ttl_ms)
            self._session_user = None
            self._session_expiry = None
            if value:
                try:
                    self._session_user = User.model_validate(value)
                    self._session_expiry = expiry
                except SchemaError:
                    logger.error("Stored session user is malformed, clearing it")
                    self.store.remove(SESSION_KEY)

    def _set_users(self, users):
        self.users = users
        self.store.save(USERS_KEY, [u.to_json_dict() for u in users])

    def _set_courses(self, courses):
        self.courses = courses
        self.store.save(COURSES_KEY, [c.to_json_dict() for c in courses])

    def _set_submissions(self, submissions):
        self.submissions = submissions
        self.store.save(SUBMISSIONS_KEY, [s.to_json_dict() for s in submissions])

    def _set_session(self, user):
        self._session_user = user
        self._session_expiry = self.store.save(
            SESSION_KEY, user.to_json_dict() if user else None, expiry_ms=self.session_ttl_ms
        )

    # ---------- session ----------

    @property
    def current_user(self):
        if self._session_user and self._session_expiry and self.store.now_ms() > self._session_expiry:
            logger.info("Session expired")
            self._session_user = None
            self._session_expiry = None
            self.store.remove(SESSION_KEY)
        return self._session_user

    def _require_user(self):
        user = self.current_user
        if user is None:
            raise AuthenticationError("You must be signed in.")
        return user

    def authenticate(self, username, password):
        user = self.find_user_by_name(username)
        if user is None:
            raise AuthenticationError("User not found. Check the username.")
        if user.password != password:
            raise AuthenticationError("Invalid password.")
        return user

    def login(self, user):
        with self._lock:
            self._set_session(user)
        logger.info(f"User {user.username} logged in")

    def logout(self):
        with self._lock:
            self._set_session(None)

    def notify(self, message):
        self.notifications.append(message)

    def pop_notifications(self):
        messages, self.notifications = self.notifications, []
        return messages

    # ---------- users ----------

    def find_user(self, user_id):
        return next((u for u in self.users if u.id == user_id), None)

    def find_user_by_name(self, username):
        wanted = username.lower()
        return next((u for u in self.users if u.username.lower() == wanted), None)

    def students(self):
        return [u for u in self.users if u.role == UserRole.STUDENT]

    def add_user(self, username, role, password):
        with self._lock:
            if self.find_user_by_name(username):
                raise DuplicateUsernameError(username)
            user = User(id=new_id("user"), username=username, role=UserRole(role), password=password)
            self._set_users(self.users + [user])
        logger.info(f"Added {user.role.value} {username}")
        actor = self.current_user
        if actor and actor.role == UserRole.ADMINISTRATOR:
            self.notify(f'User "{username}" created successfully.')
        return user

    def remove_user(self, user_id, confirmed=False):
        """Removes the user without touching their courses or submissions."""
        if not confirmed:
            return False
        with self._lock:
            self._set_users([u for u in self.users if u.id != user_id])
        logger.info(f"Removed user {user_id}")
        return True

    def update_user(self, user_id, username=None, password=None, role=None):
        details = {"username": username, "password": password, "role": UserRole(role) if role else None}
        details = {k: v for k, v in details.items() if v}
        actor = self.current_user
        with self._lock:
            user = self.find_user(user_id)
            if username:
                clash = self.find_user_by_name(username)
                if clash and clash.id != user_id:
                    raise DuplicateUsernameError(username)
            self._set_users([u.model_copy(update=details) if u.id == user_id else u for u in self.users])
            if actor and actor.id == user_id:
                self._set_session(actor.model_copy(update=details))

        if actor and actor.role == UserRole.ADMINISTRATOR and actor.id != user_id and user:
            self.notify(f'User "{details.get("username", user.username)}" updated successfully.')
        elif actor and actor.id == user_id:
            self.notify("Your profile has been updated successfully.")

    def update_profile(self, username, password="", confirm_password=""):
        """Self-service edit. Returns False when nothing changed."""
        user = self._require_user()
        if password != confirm_password:
            raise ValidationError("Passwords do not match.")
        changes = {}
        if username and username != user.username:
            changes["username"] = username
        if password:
            changes["password"] = password
        if not changes:
            return False
        self.update_user(user.id, **changes)
        return True

    # ---------- courses ----------

    def find_course(self, course_id):
        return next((c for c in self.courses if c.id == course_id), None)

    def courses_for(self, user):
        """Courses on the user's dashboard."""
        return for_role(user.role, {
            UserRole.STUDENT: lambda: [c for c in self.courses if c.is_enrolled(user.id)],
            UserRole.TEACHER: lambda: [c for c in self.courses if c.teacher_id == user.id],
            UserRole.ADMINISTRATOR: lambda: list(self.courses),
        })()

    def listed_courses(self, user):
        """Courses in the course list. Teachers only see their own."""
        return for_role(user.role, {
            UserRole.STUDENT: list(self.courses),
            UserRole.TEACHER: [c for c in self.courses if c.teacher_id == user.id],
            UserRole.ADMINISTRATOR: list(self.courses),
        })

    def _build_course(self, data, teacher_id):
        modules = [
            Module(
                id=_nested_id("mod"),
                title=m.title,
                description=m.description,
                content=m.content,
                assignments=[Assignment(id=_nested_id("ass"), title=a.title, prompt=a.prompt) for a in m.assignments],
            )
            for m in data.modules
        ]
        return Course(
            id=new_id("course"),
            title=data.title,
            description=data.description,
            teacher_id=teacher_id,
            modules=modules,
            enrolled_student_ids=[],
        )

    def create_course_manual(self, data):
        user = self._require_user()
        course = self._build_course(ManualCourseData.model_validate(data), user.id)
        with self._lock:
            self._set_courses(self.courses + [course])
        logger.info(f"{user.username} created course {course.id}")
        return course

    def create_course_ai(self, topic):
        user = self._require_user()
        generated = self.ai.generate_course(topic)
        course = self._build_course(generated, user.id)
        with self._lock:
            self._set_courses(self.courses + [course])
        logger.info(f"{user.username} generated course {course.id} on {topic!r}")
        return course

    def enroll(self, course_id):
        user = self._require_user()
        with self._lock:
            self._set_courses([
                c.model_copy(update={"enrolled_student_ids": c.enrolled_student_ids + [user.id]})
                if c.id == course_id and not c.is_enrolled(user.id) else c
                for c in self.courses
            ])

    def unenroll(self, course_id):
        user = self._require_user()
        with self._lock:
            self._set_courses([
                c.model_copy(update={"enrolled_student_ids": [i for i in c.enrolled_student_ids if i != user.id]})
                if c.id == course_id else c
                for c in self.courses
            ])

    def delete_course(self, course_id):
        """Removes the course and every submission made to it."""
        with self._lock:
            self._set_courses([c for c in self.courses if c.id != course_id])
            self._set_submissions([s for s in self.submissions if s.course_id != course_id])
        logger.info(f"Deleted course {course_id}")

    # ---------- submissions ----------

    def find_submission(self, submission_id):
        return next((s for s in self.submissions if s.id == submission_id), None)

    def submission_for(self, assignment_id, student_id):
        return next(
            (s for s in self.submissions if s.assignment_id == assignment_id and s.student_id == student_id),
            None,
        )

    def submissions_for(self, user):
        return for_role(user.role, {
            UserRole.STUDENT: [s for s in self.submissions if s.student_id == user.id],
            UserRole.TEACHER: [s for s in self.submissions if s.teacher_id == user.id],
            UserRole.ADMINISTRATOR: [],
        })

    def submit_assignment(self, draft):
        draft = SubmissionDraft.model_validate(draft)
        with self._lock:
            course = self.find_course(draft.course_id)
            if course is None:
                raise CourseNotFoundError(draft.course_id)
            submission = Submission(
                id=new_id("sub"),
                assignment_id=draft.assignment_id,
                student_id=draft.student_id,
                course_id=draft.course_id,
                teacher_id=course.teacher_id,
                content=draft.content,
                grade=None,
                feedback=None,
                submitted_at=datetime.now(),
            )
            self._set_submissions(self.submissions + [submission])
        return submission

    def evaluate(self, submission_id):
        """Grades an ungraded submission through the AI service. Unknown ids and assignments are ignored."""
        with self._lock:
            submission = self.find_submission(submission_id)
            if submission is None:
                return None
            if submission.is_graded:
                logger.debug(f"Submission {submission_id} already graded")
                return submission
            course = self.find_course(submission.course_id)
            assignment = course.find_assignment(submission.assignment_id) if course else None
            if assignment is None:
                return None

        evaluation = self.ai.evaluate_submission(assignment, submission)

        with self._lock:
            current = self.find_submission(submission_id)
            if current is None or current.is_graded:
                return current
            graded = current.model_copy(update={"grade": evaluation.grade, "feedback": evaluation.feedback})
            self._set_submissions([graded if s.id == submission_id else s for s in self.submissions])
        logger.info(f"Submission {submission_id} graded {evaluation.grade}/100")
        return graded

    # ---------- reporting ----------

    def student_stats(self, student_id):
        """(enrolled course count, average grade rounded half up or None)."""
        enrolled_count = sum(1 for c in self.courses if c.is_enrolled(student_id))
        grades = [s.grade for s in self.submissions if s.student_id == student_id and s.is_graded]
        average = _round_half_up(sum(grades) / len(grades)) if grades else None
        return enrolled_count, average

    def dashboard_summary(self, user):
        courses = self.courses_for(user)
        own = self.submissions_for(user)
        title, message, stats = for_role(user.role, {
            UserRole.STUDENT: (
                f"Welcome, {user.username}!",
                "Your learning journey starts here. Let's make progress today!",
                [
                    ("Enrolled Courses", len(courses)),
                    ("Submitted Work", len(own)),
                    ("Graded Assignments", sum(1 for s in own if s.is_graded)),
                ],
            ),
            UserRole.TEACHER: (
                "Teacher Dashboard",
                "Manage courses, evaluate submissions, and guide your students.",
                [
                    ("Your Courses", len(courses)),
                    ("Total Submissions", len(own)),
                    ("Awaiting Grading", sum(1 for s in own if not s.is_graded)),
                ],
            ),
            UserRole.ADMINISTRATOR: (
                "Admin Dashboard",
                "Oversee all platform activity from a bird's-eye view.",
                [
                    ("Total Courses", len(self.courses)),
                    ("Total Users", len(self.users)),
                    ("Total Submissions", len(self.submissions)),
                ],
            ),
        })
        return {"title": title, "message": message, "stats": stats, "courses": courses}

    def progress_report(self):
        user = self._require_user()
        own = [s for s in self.submissions if s.student_id == user.id]
        return self.ai.generate_progress_report(user.username, self.courses, own)

    def admin_performance_report(self, student_id):
        student = self.find_user(student_id)
        if student is None:
            raise ValidationError("Student not found.")
        enrolled_count, average = self.student_stats(student_id)
        result = self.ai.generate_admin_performance_summary(student.username, enrolled_count, average)
        if result.performance == "N/A":
            return result.summary
        return f"{result.summary} Overall Performance: {result.performance}."

    def study_help(self, course_id, question):
        course = self.find_course(course_id)
        if course is None:
            raise ValidationError("Course not found.")
        return self.ai.get_ai_study_help(course, question)


class StateRegistry:
    """
    One LmsState per storage namespace.

    Holds at most `max_states` containers, dropping the least recently used.
    An evicted namespace is hydrated again from its store on the next request.
    """

    def __init__(self, backend_factory, ai=ai_service, session_ttl_ms=SESSION_TTL_MS, max_states=STATE_CACHE_SIZE):
        self.backend_factory = backend_factory
        self.ai = ai
        self.session_ttl_ms = session_ttl_ms
        self.max_states = max_states
        self._states = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self):
        return len(self._states)

    def get(self, namespace):
        with self._lock:
            state = self._states.get(namespace)
            if state is None:
                store = PersistentStore(self.backend_factory(namespace))
                state = LmsState(store, ai=self.ai, session_ttl_ms=self.session_ttl_ms)
                self._states[namespace] = state
                while len(self._states) > self.max_states:
                    evicted, _ = self._states.popitem(last=False)
                    logger.debug(f"Evicted state for namespace {evicted}")
            else:
                self._states.move_to_end(namespace)
            return state

    def discard(self, namespace):
        with self._lock:
            self._states.pop(namespace, None)
