from io import BytesIO
import logging

from flask import request, jsonify, current_app, send_file
import mysql.connector
from openpyxl import Workbook
from openpyxl.styles import Font, Alignment

from apps.statistics import blueprint
from apps.statistics.aggregation import (
    resolve_scope, select_period_rows, select_teacher_rows,
    aggregate_enrollment, aggregate_student_attendance, aggregate_teacher_attendance,
    teacher_attendance_breakdown,
    student_attendance_rate, build_period_catalog, format_period_catalog, ROW_SEMANTICS,
)
from apps.statistics.queries import fetch_metric_rows, fetch_period_triples

logger = logging.getLogger(__name__)

SCOPE_PARAMS = ['schoolId (optional)', 'circuitId (optional)', 'districtId (optional)', 'regionId (optional)']
PERIOD_PARAMS = ['year (optional, default: current year)', 'term (optional, default: 1)', 'weekNumber (optional)']

EMPTY_TEACHER_SUMMARY = {
    'totalTeachers': 0,
    'attendanceRate': 0,
    'exerciseCompletionRate': 0,
}


class BadRequest(ValueError):
    pass


def parse_request_params(args):
    """Scope, period and selection options from the query string."""
    week_number = args.get('weekNumber') or None
    if week_number is not None:
        try:
            week_number = int(week_number)
        except ValueError:
            raise BadRequest("weekNumber must be a whole number")
        if week_number < 1:
            raise BadRequest("weekNumber must be positive")

    row_semantics = args.get('rowSemantics') or None
    if row_semantics is not None and row_semantics not in ROW_SEMANTICS:
        raise BadRequest(f"rowSemantics must be one of: {', '.join(ROW_SEMANTICS)}")

    return {
        'scope': resolve_scope(args),
        'year': args.get('year') or current_app.config['DEFAULT_ACADEMIC_YEAR'],
        'term': args.get('term') or current_app.config['DEFAULT_TERM'],
        'week_number': week_number,
        'aggregate': args.get('aggregate') == 'true',
        'row_semantics': row_semantics,
    }


def load_rows(metric, params):
    # the week filter only narrows the query when we are not rolling weeks up
    week = None if params['aggregate'] else params['week_number']
    return fetch_metric_rows(metric, params['scope'], year=params['year'], term=params['term'], week_number=week)


def select_rows(rows, params):
    return select_period_rows(
        rows,
        aggregate=params['aggregate'],
        week_number=params['week_number'],
        row_semantics=params['row_semantics'],
    )


def select_teachers(rows, params):
    return select_teacher_rows(
        rows,
        aggregate=params['aggregate'],
        week_number=params['week_number'],
        row_semantics=params['row_semantics'],
    )


def error_response(message, status):
    return jsonify({'success': False, 'error': message}), status


@blueprint.route('', methods=['GET'])
def statistics_index():
    """Lists the statistics endpoints and their parameters."""
    return jsonify({
        'success': True,
        'endpoints': [
            {
                'path': '/api/statistics/periods',
                'description': 'Get available submission periods (years, terms, and weeks)',
                'parameters': SCOPE_PARAMS,
            },
            {
                'path': '/api/statistics/enrolment',
                'description': 'Get school enrolment statistics',
                'parameters': SCOPE_PARAMS + PERIOD_PARAMS + ['aggregate (optional)', 'rowSemantics (optional)'],
            },
            {
                'path': '/api/statistics/student-attendance',
                'description': 'Get student attendance statistics',
                'parameters': SCOPE_PARAMS + PERIOD_PARAMS + ['aggregate (optional)', 'rowSemantics (optional)'],
            },
            {
                'path': '/api/statistics/teacher-attendance',
                'description': 'Get teacher attendance and performance statistics',
                'parameters': SCOPE_PARAMS + PERIOD_PARAMS + ['aggregate (optional)'],
            },
            {
                'path': '/api/statistics/export',
                'description': 'Download the statistics summary as an Excel workbook',
                'parameters': SCOPE_PARAMS + PERIOD_PARAMS + ['aggregate (optional)', 'rowSemantics (optional)'],
            },
        ]
    })


@blueprint.route('/periods', methods=['GET'])
def periods():
    """Available submission periods grouped by academic year and term."""
    scope = resolve_scope(request.args)

    try:
        triples = fetch_period_triples(scope)
    except mysql.connector.Error:
        logger.exception("Error fetching submission periods")
        return error_response('Failed to fetch submission periods', 500)

    catalog = build_period_catalog(triples, most_recent_first=True)
    return jsonify({'success': True, 'periods': format_period_catalog(catalog)})


@blueprint.route('/enrolment', methods=['GET'])
def enrolment():
    """Enrolment for a scope: the selected week's row, or the term total when aggregating."""
    try:
        params = parse_request_params(request.args)
    except BadRequest as e:
        return error_response(str(e), 400)

    logger.info("Enrolment requested: %s", params)

    try:
        rows = load_rows('enrolment', params)
    except mysql.connector.Error:
        logger.exception("Error fetching enrolment data")
        return error_response('Failed to fetch enrolment data', 500)

    selected = select_rows(rows, params)
    if params['aggregate']:
        data = aggregate_enrollment(selected)
    else:
        data = selected[0] if selected else None

    return jsonify({'success': True, 'data': data})


@blueprint.route('/student-attendance', methods=['GET'])
def student_attendance():
    try:
        params = parse_request_params(request.args)
    except BadRequest as e:
        return error_response(str(e), 400)

    logger.info("Student attendance requested: %s", params)

    try:
        rows = load_rows('student_attendance', params)
    except mysql.connector.Error:
        logger.exception("Error fetching student attendance data")
        return error_response('Failed to fetch student attendance data', 500)

    selected = select_rows(rows, params)
    if params['aggregate']:
        return jsonify({'success': True, 'data': aggregate_student_attendance(selected)})

    data = [dict(row, attendance_rate=student_attendance_rate(row)) for row in selected]
    return jsonify({'success': True, 'data': data})


@blueprint.route('/teacher-attendance', methods=['GET'])
def teacher_attendance():
    try:
        params = parse_request_params(request.args)
    except BadRequest as e:
        return error_response(str(e), 400)

    logger.info("Teacher attendance requested: %s", params)

    try:
        rows = load_rows('teacher_attendance', params)
    except mysql.connector.Error:
        logger.exception("Error fetching teacher attendance data")
        return error_response('Failed to fetch teacher attendance data', 500)

    selected = select_teachers(rows, params)
    summary = dict(aggregate_teacher_attendance(selected) or EMPTY_TEACHER_SUMMARY)
    summary.update(teacher_attendance_breakdown(selected))

    return jsonify({'success': True, 'data': {'summary': summary, 'details': selected}})


# ----------------------
# Excel export
# ----------------------

def describe_scope(scope):
    if scope is None:
        return 'All schools'
    return f"{scope.level.title()} {scope.value}"


def _write_details(wb, title, rows):
    ws = wb.create_sheet(title)
    if not rows:
        ws.append(['No data for the selected period'])
        return
    headers = list(rows[0].keys())
    ws.append(headers)
    for cell in ws[1]:
        cell.font = Font(bold=True)
    for row in rows:
        ws.append([row.get(h) for h in headers])


def build_statistics_workbook(params, enrolment_rows, attendance_rows, teacher_rows):
    wb = Workbook()
    ws = wb.active
    ws.title = "Summary"

    ws.merge_cells('A1:C1')
    ws['A1'] = "School Indicators Summary"
    ws['A1'].font = Font(bold=True, size=12)
    ws['A1'].alignment = Alignment(horizontal='center')

    ws.append(['Scope', describe_scope(params['scope'])])
    ws.append(['Year', params['year']])
    ws.append(['Term', params['term']])
    ws.append(['Week', params['week_number'] or ('All' if params['aggregate'] else 'Latest')])
    ws.append([])

    header_row = ws.max_row + 1
    ws.append(['Indicator', 'Value'])
    for cell in ws[header_row]:
        cell.font = Font(bold=True)

    enrolment = aggregate_enrollment(enrolment_rows) or {}
    attendance = aggregate_student_attendance(attendance_rows) or {}
    teachers = aggregate_teacher_attendance(teacher_rows) or EMPTY_TEACHER_SUMMARY
    breakdown = teacher_attendance_breakdown(teacher_rows)
    gender = enrolment.get('genderDistribution', {})

    for label, value in [
        ('Total students', enrolment.get('totalStudents', 0)),
        ('Boys', gender.get('boys', 0)),
        ('Girls', gender.get('girls', 0)),
        ('Students enrolled (attendance)', attendance.get('totalEnrolled', 0)),
        ('Students present', attendance.get('totalPresent', 0)),
        ('Student attendance rate (%)', attendance.get('attendanceRate', 0)),
        ('Teachers', teachers['totalTeachers']),
        ('Teacher attendance rate (%)', teachers['attendanceRate']),
        ('Teacher punctuality rate (%)', breakdown['punctualityRate']),
        ('Exercise completion rate (%)', teachers['exerciseCompletionRate']),
    ]:
        ws.append([label, value])

    ws.column_dimensions['A'].width = 34
    ws.column_dimensions['B'].width = 18

    _write_details(wb, "Enrolment", enrolment_rows)
    _write_details(wb, "Student Attendance", attendance_rows)
    _write_details(wb, "Teacher Attendance", teacher_rows)
    return wb


@blueprint.route('/export', methods=['GET'])
def export_statistics():
    """Download enrolment and attendance summaries for a scope and period as .xlsx."""
    try:
        params = parse_request_params(request.args)
    except BadRequest as e:
        return error_response(str(e), 400)

    try:
        enrolment_rows = select_rows(load_rows('enrolment', params), params)
        attendance_rows = select_rows(load_rows('student_attendance', params), params)
        teacher_rows = select_teachers(load_rows('teacher_attendance', params), params)
    except mysql.connector.Error:
        logger.exception("Error fetching statistics for export")
        return error_response('Failed to export statistics', 500)

    wb = build_statistics_workbook(params, enrolment_rows, attendance_rows, teacher_rows)

    output = BytesIO()
    wb.save(output)
    output.seek(0)

    filename = f"statistics_{params['year'].replace('/', '-')}_term{params['term']}.xlsx"
    return send_file(
        output,
        as_attachment=True,
        download_name=filename,
        mimetype="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
    )
