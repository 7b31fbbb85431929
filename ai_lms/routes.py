import re
import uuid
import logging

from flask import Blueprint, current_app, flash, redirect, render_template, request, session

from ai_lms import views
from ai_lms.exceptions import AccessDenied, AIServiceError, ValidationError
from ai_lms.schemas import AssignmentDraft, ManualCourseData, ModuleDraft, SubmissionDraft, UserRole, for_role

logger = logging.getLogger(__name__)

routes = Blueprint('routes', __name__)

MODULE_FIELD = re.compile(r"^modules-(\d+)-(title|description|content)$")
ASSIGNMENT_FIELD = re.compile(r"^modules-(\d+)-assignments-(\d+)-(title|prompt)$")


# --- HELPER: STATE FOR THIS BROWSER ---
def current_state():
    if 'browser_id' not in session:
        session['browser_id'] = uuid.uuid4().hex
        session.permanent = True
    return current_app.extensions['lms_states'].get(session['browser_id'])


def signed_in():
    state = current_state()
    return state, state.current_user


def flash_notifications(state):
    for message in state.pop_notifications():
        flash(message, 'success')


def forbidden():
    flash("You do not have permission to do that.", "danger")
    return redirect('/view/dashboard')


def back_to(default):
    target = request.form.get('next') or default
    # Only follow local paths
    if not target.startswith('/') or target.startswith('//'):
        target = default
    return redirect(target)


def render_view(view_id, state, user, course_id=None, status=200, **extra):
    try:
        return views.render(view_id, state, user, course_id, **extra), status
    except AccessDenied as e:
        return render_template('access_denied.html', user=user, nav=views.nav_items(user.role), message=str(e)), 403


def parse_manual_course(form):
    """Collect the indexed module/assignment fields of the manual course form."""
    title = form.get('title', '').strip()
    if not title:
        raise ValidationError("Course title is required.")

    modules, assignments = {}, {}
    for name, value in form.items():
        match = MODULE_FIELD.match(name)
        if match:
            modules.setdefault(int(match.group(1)), {})[match.group(2)] = value.strip()
            continue
        match = ASSIGNMENT_FIELD.match(name)
        if match:
            key = (int(match.group(1)), int(match.group(2)))
            assignments.setdefault(key, {})[match.group(3)] = value.strip()

    drafts = []
    for index in sorted(modules):
        fields = modules[index]
        if not fields.get('title'):
            continue
        module_assignments = [
            AssignmentDraft(title=a.get('title', ''), prompt=a.get('prompt', ''))
            for (m, _), a in sorted(assignments.items())
            if m == index and a.get('title')
        ]
        drafts.append(ModuleDraft(
            title=fields['title'],
            description=fields.get('description', ''),
            content=fields.get('content', ''),
            assignments=module_assignments,
        ))
    return ManualCourseData(title=title, description=form.get('description', '').strip(), modules=drafts)


# --- AUTH ROUTES ---
@routes.route('/')
def home():
    state, user = signed_in()
    return redirect('/view/dashboard' if user else '/login')


@routes.route('/login', methods=['GET', 'POST'])
def login():
    state, user = signed_in()
    if user: return redirect('/view/dashboard')

    error = None
    if request.method == 'POST':
        try:
            account = state.authenticate(request.form.get('username', ''), request.form.get('password', ''))
            state.login(account)
            return redirect('/view/dashboard')
        except ValidationError as e:
            error = str(e)
    return render_template('login.html', error=error), (401 if error else 200)


@routes.route('/logout')
def logout():
    state = current_state()
    state.logout()
    return redirect('/login')


# --- VIEW ROUTER ---
@routes.route('/view/<view_id>')
def show_view(view_id):
    state, user = signed_in()
    if not user: return redirect('/login')
    flash_notifications(state)
    return render_view(view_id, state, user)


@routes.route('/courses/<course_id>')
def course_detail(course_id):
    state, user = signed_in()
    if not user: return redirect('/login')
    flash_notifications(state)
    return render_view('course-detail', state, user, course_id)


# --- COURSE ROUTES ---
@routes.route('/courses/create-ai', methods=['POST'])
def create_course_ai():
    state, user = signed_in()
    if not user: return redirect('/login')
    if user.role == UserRole.STUDENT: return forbidden()

    topic = request.form.get('topic', '').strip()
    if not topic:
        return render_view('create-course', state, user, status=400, error="Please enter a topic.")
    try:
        state.create_course_ai(topic)
    except AIServiceError as e:
        return render_view('create-course', state, user, status=502, error=str(e), topic=topic)
    return redirect('/view/courses')


@routes.route('/courses/create-manual', methods=['POST'])
def create_course_manual():
    state, user = signed_in()
    if not user: return redirect('/login')
    if user.role == UserRole.STUDENT: return forbidden()

    try:
        state.create_course_manual(parse_manual_course(request.form))
    except ValidationError as e:
        return render_view('manual-create-course', state, user, status=400, error=str(e))
    return redirect('/view/courses')


@routes.route('/courses/<course_id>/enroll', methods=['POST'])
def enroll(course_id):
    state, user = signed_in()
    if not user: return redirect('/login')
    if user.role != UserRole.STUDENT: return forbidden()
    state.enroll(course_id)
    return back_to(f'/courses/{course_id}')


@routes.route('/courses/<course_id>/unenroll', methods=['POST'])
def unenroll(course_id):
    state, user = signed_in()
    if not user: return redirect('/login')
    if user.role != UserRole.STUDENT: return forbidden()
    state.unenroll(course_id)
    return back_to('/view/courses')


@routes.route('/courses/<course_id>/delete', methods=['POST'])
def delete_course(course_id):
    state, user = signed_in()
    if not user: return redirect('/login')
    course = state.find_course(course_id)
    if course is None: return redirect('/view/courses')
    can_delete = for_role(user.role, {
        UserRole.ADMINISTRATOR: True,
        UserRole.TEACHER: course.teacher_id == user.id,
        UserRole.STUDENT: False,
    })
    if not can_delete: return forbidden()
    if request.form.get('confirm') != 'yes':
        return redirect(f'/courses/{course_id}')
    state.delete_course(course_id)
    flash(f'Course "{course.title}" deleted.', 'success')
    return redirect('/view/courses')


@routes.route('/courses/<course_id>/assignments/<assignment_id>/submit', methods=['POST'])
def submit_assignment(course_id, assignment_id):
    state, user = signed_in()
    if not user: return redirect('/login')
    if user.role != UserRole.STUDENT: return forbidden()

    course = state.find_course(course_id)
    if course is None or not course.is_enrolled(user.id): return forbidden()
    if course.find_assignment(assignment_id) is None:
        flash("Assignment not found in this course.", "danger")
        return redirect(f'/courses/{course_id}')
    if state.submission_for(assignment_id, user.id):
        flash("You have already submitted this assignment.", "danger")
        return redirect(f'/courses/{course_id}')

    content = request.form.get('content', '').strip()
    if not content:
        flash("Your submission is empty.", "danger")
        return redirect(f'/courses/{course_id}')
    try:
        state.submit_assignment(SubmissionDraft(
            assignment_id=assignment_id, student_id=user.id, course_id=course_id, content=content,
        ))
    except ValidationError as e:
        flash(str(e), "danger")
    return redirect(f'/courses/{course_id}')


@routes.route('/courses/<course_id>/study-help', methods=['GET', 'POST'])
def study_help(course_id):
    state, user = signed_in()
    if not user: return redirect('/login')
    course = state.find_course(course_id)
    if course is None or views.course_detail_mode(course, user) != 'full' or user.role != UserRole.STUDENT:
        return forbidden()

    context = {"course": course, "user": user, "nav": views.nav_items(user.role)}
    if request.method == 'POST':
        question = request.form.get('question', '').strip()
        context["question"] = question
        if question:
            try:
                context["answer"] = state.study_help(course_id, question)
            except AIServiceError as e:
                context["error"] = str(e)
    return render_template('study_helper.html', **context)


# --- GRADING ROUTES ---
@routes.route('/submissions/<submission_id>/evaluate', methods=['POST'])
def evaluate(submission_id):
    state, user = signed_in()
    if not user: return redirect('/login')
    submission = state.find_submission(submission_id)
    if submission is None: return redirect('/view/grades')
    can_grade = for_role(user.role, {
        UserRole.ADMINISTRATOR: False,
        UserRole.TEACHER: submission.teacher_id == user.id,
        UserRole.STUDENT: False,
    })
    if not can_grade: return forbidden()
    try:
        state.evaluate(submission_id)
    except AIServiceError as e:
        flash(str(e), "danger")
    return redirect('/view/grades')


@routes.route('/reports/progress', methods=['POST'])
def progress_report():
    state, user = signed_in()
    if not user: return redirect('/login')
    if user.role != UserRole.STUDENT: return forbidden()
    try:
        return render_view('grades', state, user, report=state.progress_report())
    except AIServiceError as e:
        return render_view('grades', state, user, status=502, report_error=str(e))


@routes.route('/performance/<student_id>/summary', methods=['POST'])
def performance_summary(student_id):
    state, user = signed_in()
    if not user: return redirect('/login')
    if user.role != UserRole.ADMINISTRATOR: return forbidden()
    try:
        reports = {student_id: state.admin_performance_report(student_id)}
        return render_view('performance', state, user, reports=reports)
    except (AIServiceError, ValidationError) as e:
        return render_view('performance', state, user, status=502, report_errors={student_id: str(e)})


# --- USER ROUTES ---
@routes.route('/users', methods=['POST'])
def add_user():
    state, user = signed_in()
    if not user: return redirect('/login')
    if user.role != UserRole.ADMINISTRATOR: return forbidden()

    username = request.form.get('username', '').strip()
    password = request.form.get('password', '').strip()
    role = request.form.get('role', UserRole.STUDENT.value)
    if username and password:
        try:
            state.add_user(username, role, password)
        except ValueError:
            flash("Unknown role.", "danger")
        except ValidationError as e:
            flash(str(e), "danger")
    return redirect('/view/user-management')


@routes.route('/users/<user_id>/delete', methods=['POST'])
def remove_user(user_id):
    state, user = signed_in()
    if not user: return redirect('/login')
    if user.role != UserRole.ADMINISTRATOR: return forbidden()
    target = state.find_user(user_id)
    if target and target.role == UserRole.ADMINISTRATOR: return forbidden()
    state.remove_user(user_id, confirmed=request.form.get('confirm') == 'yes')
    return redirect('/view/user-management')


@routes.route('/users/<user_id>/edit', methods=['POST'])
def edit_user(user_id):
    state, user = signed_in()
    if not user: return redirect('/login')
    if user.role != UserRole.ADMINISTRATOR: return forbidden()
    target = state.find_user(user_id)
    if target is None or target.role == UserRole.ADMINISTRATOR: return forbidden()

    username = request.form.get('username', '').strip()
    role = request.form.get('role')
    try:
        state.update_user(
            user_id,
            username=username if username != target.username else None,
            password=request.form.get('password') or None,
            role=role if role and role != target.role.value else None,
        )
    except ValueError:
        flash("Unknown role.", "danger")
    except ValidationError as e:
        flash(str(e), "danger")
    return redirect('/view/user-management')


@routes.route('/profile', methods=['GET', 'POST'])
def profile():
    state, user = signed_in()
    if not user: return redirect('/login')
    if user.role == UserRole.ADMINISTRATOR: return forbidden()

    error = None
    if request.method == 'POST':
        try:
            state.update_profile(
                request.form.get('username', '').strip(),
                request.form.get('password', ''),
                request.form.get('confirm_password', ''),
            )
            return redirect('/view/dashboard')
        except ValidationError as e:
            error = str(e)
    return render_template('profile.html', user=state.current_user, nav=views.nav_items(user.role), error=error), (400 if error else 200)
