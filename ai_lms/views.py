"""
View router.

Maps a view id plus the selected course to the function that builds its
template context. Navigation is role based; every role decision goes through
for_role so a new role cannot be added without deciding each branch.
"""
from collections import namedtuple

from flask import render_template

from ai_lms.exceptions import AccessDenied
from ai_lms.schemas import UserRole, for_role
from ai_lms.state import assignment_status

View = namedtuple("View", ["id", "template", "build"])

NAV_ITEMS = {
    UserRole.STUDENT: [
        ("dashboard", "Dashboard"),
        ("courses", "Courses"),
        ("grades", "Progress"),
    ],
    UserRole.TEACHER: [
        ("dashboard", "Dashboard"),
        ("courses", "Courses"),
        ("grades", "Submissions"),
    ],
    UserRole.ADMINISTRATOR: [
        ("dashboard", "Dashboard"),
        ("courses", "Courses"),
        ("performance", "Performance"),
        ("user-management", "User Management"),
    ],
}

# Reachable from inside a page rather than the sidebar
SUB_VIEWS = {
    UserRole.STUDENT: ["course-detail"],
    UserRole.TEACHER: ["course-detail", "create-course", "manual-create-course"],
    UserRole.ADMINISTRATOR: ["course-detail", "create-course", "manual-create-course"],
}

DEFAULT_VIEW = "dashboard"


def nav_items(role):
    return for_role(role, NAV_ITEMS)


def allowed_views(role):
    return [view_id for view_id, _ in nav_items(role)] + for_role(role, SUB_VIEWS)


# ---------- context builders ----------

def _dashboard(state, user, course_id):
    return {"summary": state.dashboard_summary(user)}


def _courses(state, user, course_id):
    courses = state.listed_courses(user)
    return {
        "courses": courses,
        "heading": "Your Courses" if user.role == UserRole.TEACHER else "All Courses",
        "can_create": user.role != UserRole.STUDENT,
        "enrolled": {c.id for c in courses if c.is_enrolled(user.id)},
    }


def course_detail_mode(course, user):
    """Which variant of the course page this user gets."""
    if course is None:
        return "missing"
    return for_role(user.role, {
        UserRole.ADMINISTRATOR: "admin",
        UserRole.TEACHER: "full" if course.teacher_id == user.id else "denied",
        UserRole.STUDENT: "full" if course.is_enrolled(user.id) else "enroll",
    })


def _course_detail(state, user, course_id):
    course = state.find_course(course_id)
    mode = course_detail_mode(course, user)
    context = {"course": course, "mode": mode}
    if mode == "admin":
        context["enrolled_students"] = [u for u in state.users if course.is_enrolled(u.id)]
    elif mode == "full":
        items = {}
        for assignment in course.all_assignments():
            submission = state.submission_for(assignment.id, user.id)
            items[assignment.id] = {"submission": submission, "status": assignment_status(submission)}
        context["assignment_items"] = items
        context["can_submit"] = user.role == UserRole.STUDENT
        context["can_delete"] = user.role == UserRole.TEACHER
    return context


def _create_course(state, user, course_id):
    return {}


def _grades(state, user, course_id):
    rows = []
    for submission in state.submissions_for(user):
        course = state.find_course(submission.course_id)
        assignment = course.find_assignment(submission.assignment_id) if course else None
        student = state.find_user(submission.student_id)
        rows.append({
            "submission": submission,
            "course_title": course.title if course else None,
            "assignment_title": assignment.title if assignment else None,
            "student_name": student.username if student else "Unknown",
        })
    return {
        "rows": rows,
        "is_student": user.role == UserRole.STUDENT,
        "heading": "Progress & Grades" if user.role == UserRole.STUDENT else "Submissions",
    }


def _performance(state, user, course_id):
    students = []
    for student in state.students():
        enrolled_count, average = state.student_stats(student.id)
        students.append({"user": student, "enrolled_count": enrolled_count, "average_grade": average})
    return {"students": students}


def _user_management(state, user, course_id):
    order = [UserRole.ADMINISTRATOR, UserRole.STUDENT, UserRole.TEACHER]
    return {
        "groups": [(role, [u for u in state.users if u.role == role]) for role in order],
        "assignable_roles": [UserRole.STUDENT, UserRole.TEACHER],
    }


VIEWS = {
    "dashboard": View("dashboard", "dashboard.html", _dashboard),
    "courses": View("courses", "courses.html", _courses),
    "course-detail": View("course-detail", "course_detail.html", _course_detail),
    "create-course": View("create-course", "create_course_ai.html", _create_course),
    "manual-create-course": View("manual-create-course", "create_course_manual.html", _create_course),
    "grades": View("grades", "grades.html", _grades),
    "performance": View("performance", "performance.html", _performance),
    "user-management": View("user-management", "user_management.html", _user_management),
}


def resolve(view_id, role):
    view = VIEWS.get(view_id) or VIEWS[DEFAULT_VIEW]
    if view.id not in allowed_views(role):
        raise AccessDenied(view.id)
    return view


def build(view_id, state, user, course_id=None):
    """Resolve and build without rendering. Returns (view, context)."""
    view = resolve(view_id, user.role)
    return view, view.build(state, user, course_id)


def render(view_id, state, user, course_id=None, **extra):
    view, context = build(view_id, state, user, course_id)
    context.update(extra)
    return render_template(
        view.template,
        view_id=view.id,
        user=user,
        nav=nav_items(user.role),
        **context,
    )
