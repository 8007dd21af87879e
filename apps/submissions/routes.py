from io import BytesIO
import logging
import zipfile

from flask import request, jsonify, current_app, send_file, g
import mysql.connector
import numpy as np
import pandas as pd
from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.worksheet.datavalidation import DataValidation

from apps import get_db_connection
from apps.submissions import blueprint
from apps.statistics.queries import METRIC_TABLES
from apps.utils.cache import CacheService
from apps.utils.dates import get_local_time_naive
from apps.utils.decorators import login_required

logger = logging.getLogger(__name__)

SUBMISSION_TYPES = ('enrolment', 'student_attendance')

KEY_COLUMNS = ['school_id', 'year', 'term', 'week_number']
COUNT_COLUMNS = [
    'normal_boys_total', 'normal_girls_total',
    'special_boys_total', 'special_girls_total',
    'total_population',
]
TEMPLATE_COLUMNS = KEY_COLUMNS + COUNT_COLUMNS

MAX_WEEK = 20
TERMS = ('1', '2', '3')


def allowed_file(filename):
    """Check if the uploaded file has a valid extension."""
    return '.' in filename and filename.rsplit('.', 1)[1].lower() in current_app.config['ALLOWED_EXTENSIONS']


def submission_type():
    kind = request.args.get('type', 'enrolment')
    return kind if kind in SUBMISSION_TYPES else None


@blueprint.route('/template', methods=['GET'])
@login_required
def download_template():
    """Blank weekly totals sheet with the expected columns."""
    kind = submission_type()
    if not kind:
        return jsonify({'success': False, 'error': f"type must be one of: {', '.join(SUBMISSION_TYPES)}"}), 400

    wb = Workbook()
    ws = wb.active
    ws.title = kind
    ws.append(TEMPLATE_COLUMNS)
    for cell in ws[1]:
        cell.font = Font(bold=True)
        ws.column_dimensions[cell.column_letter].width = max(14, len(cell.value) + 2)

    term_list = DataValidation(type="list", formula1=f'"{",".join(TERMS)}"', allow_blank=False)
    week_range = DataValidation(type="whole", operator="between", formula1="1", formula2=str(MAX_WEEK))
    counts = DataValidation(type="whole", operator="greaterThanOrEqual", formula1="0")
    for dv, cells in [(term_list, 'C2:C1000'), (week_range, 'D2:D1000'), (counts, 'E2:I1000')]:
        ws.add_data_validation(dv)
        dv.add(cells)

    output = BytesIO()
    wb.save(output)
    output.seek(0)

    return send_file(
        output,
        as_attachment=True,
        download_name=f"{kind}_upload_template.xlsx",
        mimetype="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
    )


def load_schools(cursor, school_ids):
    """Hierarchy ids of the given schools, keyed by school id."""
    if not school_ids:
        return {}
    placeholders = ','.join(['%s'] * len(school_ids))
    cursor.execute(f"""
        SELECT s.id, s.circuit_id, s.district_id, d.region_id
        FROM schools s
        LEFT JOIN districts d ON s.district_id = d.id
        WHERE s.id IN ({placeholders})
    """, tuple(school_ids))
    return {row['id']: row for row in cursor.fetchall()}


def load_existing_keys(cursor, table, school_ids):
    if not school_ids:
        return set()
    placeholders = ','.join(['%s'] * len(school_ids))
    cursor.execute(
        f"SELECT school_id, year, term, week_number FROM {table} WHERE school_id IN ({placeholders})",
        tuple(school_ids)
    )
    return {(row['school_id'], str(row['year']), str(row['term']), int(row['week_number']))
            for row in cursor.fetchall()}


def validate_submission_data(df, table, cursor):
    """
    Check an uploaded sheet and turn it into insertable rows.

    Returns (processed_rows, errors, skipped) where skipped lists the
    (school, year, term, week) keys already on record.
    """
    processed, errors, skipped = [], [], []

    df.columns = df.columns.astype(str).str.strip().str.lower()
    missing = [c for c in TEMPLATE_COLUMNS if c not in df.columns]
    if missing:
        return [], [f"Missing required columns: {', '.join(missing)}"], []

    df = df.dropna(how='all')
    numeric = df[['school_id', 'week_number'] + COUNT_COLUMNS].apply(pd.to_numeric, errors='coerce')

    school_ids = sorted({int(v) for v in numeric['school_id'].dropna()})
    schools = load_schools(cursor, school_ids)
    existing = load_existing_keys(cursor, table, school_ids)
    seen = set()

    for index, row in df.iterrows():
        line = index + 2
        values = numeric.loc[index]

        if values[['school_id', 'week_number'] + COUNT_COLUMNS].isna().any():
            errors.append(f"Row {line}: school_id, week_number and all totals must be numbers.")
            continue
        if (values[COUNT_COLUMNS] < 0).any() or not np.all(np.mod(values[COUNT_COLUMNS], 1) == 0):
            errors.append(f"Row {line}: totals must be whole numbers of zero or more.")
            continue

        year = str(row['year']).strip() if not pd.isna(row['year']) else ''
        term = str(row['term']).strip() if not pd.isna(row['term']) else ''
        if term.endswith('.0'):
            term = term[:-2]
        week = int(values['week_number'])
        school_id = int(values['school_id'])

        if not year or term not in TERMS:
            errors.append(f"Row {line}: year is required and term must be one of {', '.join(TERMS)}.")
            continue
        if not 1 <= week <= MAX_WEEK:
            errors.append(f"Row {line}: week_number must be between 1 and {MAX_WEEK}.")
            continue

        school = schools.get(school_id)
        if not school:
            errors.append(f"Row {line}: school {school_id} not found.")
            continue

        key = (school_id, year, term, week)
        if key in seen:
            errors.append(f"Row {line}: duplicate of an earlier row for school {school_id}, week {week}.")
            continue
        seen.add(key)

        if key in existing:
            skipped.append(key)
            continue

        data = {
            'school_id': school_id,
            'circuit_id': school['circuit_id'],
            'district_id': school['district_id'],
            'region_id': school['region_id'],
            'year': year,
            'term': term,
            'week_number': week,
        }
        data.update({column: int(values[column]) for column in COUNT_COLUMNS})
        processed.append(data)

    return processed, errors, skipped


def insert_submission_rows(cursor, table, rows):
    now = get_local_time_naive()
    query = f"""
        INSERT INTO {table} (
            school_id, circuit_id, district_id, region_id, year, term, week_number,
            normal_boys_total, normal_girls_total, special_boys_total, special_girls_total,
            total_population, created_at
        ) VALUES (
            %(school_id)s, %(circuit_id)s, %(district_id)s, %(region_id)s, %(year)s, %(term)s,
            %(week_number)s, %(normal_boys_total)s, %(normal_girls_total)s, %(special_boys_total)s,
            %(special_girls_total)s, %(total_population)s, %(created_at)s
        )
    """
    for data in rows:
        cursor.execute(query, dict(data, created_at=now))


def stats_cache_patterns(rows):
    """Cached entity statistics that the inserted rows make stale."""
    patterns = set()
    for data in rows:
        for level in ('school', 'circuit', 'district', 'region'):
            entity_id = data.get(f'{level}_id')
            if entity_id is not None:
                patterns.add(f"{level}:{entity_id}:stats:*")
    return sorted(patterns)


@blueprint.route('/upload', methods=['POST'])
@login_required
def upload_submission():
    """Import weekly enrolment or attendance totals from an Excel sheet."""
    kind = submission_type()
    if not kind:
        return jsonify({'success': False, 'error': f"type must be one of: {', '.join(SUBMISSION_TYPES)}"}), 400

    file = request.files.get('file')
    if not file or file.filename == '':
        return jsonify({'success': False, 'error': 'No file selected.'}), 400
    if not allowed_file(file.filename):
        return jsonify({'success': False, 'error': 'Invalid file format. Please upload an Excel (.xlsx) file.'}), 400

    try:
        df = pd.read_excel(BytesIO(file.read()))
    except (ValueError, OSError, zipfile.BadZipFile) as e:
        logger.warning("Unreadable upload %s: %s", file.filename, e)
        return jsonify({'success': False, 'error': 'The uploaded file could not be read as a spreadsheet.'}), 400

    if df.empty:
        return jsonify({'success': False, 'error': 'Uploaded file is empty.'}), 400

    table = METRIC_TABLES[kind]['table']
    try:
        with get_db_connection() as connection:
            with connection.cursor(dictionary=True) as cursor:
                processed, errors, skipped = validate_submission_data(df, table, cursor)
                if errors:
                    return jsonify({'success': False, 'errors': errors}), 400

                if processed:
                    insert_submission_rows(cursor, table, processed)
                    connection.commit()
    except mysql.connector.Error:
        logger.exception("Error importing %s upload", kind)
        return jsonify({'success': False, 'error': 'Failed to save the uploaded records'}), 500

    if processed:
        CacheService.invalidate_multiple(stats_cache_patterns(processed))

    logger.info("User %s uploaded %d %s rows (%d skipped)", g.user_id, len(processed), kind, len(skipped))
    return jsonify({
        'success': True,
        'inserted': len(processed),
        'skipped': [
            {'schoolId': s, 'year': y, 'term': t, 'weekNumber': w} for s, y, t, w in skipped
        ],
    })
