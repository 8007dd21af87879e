import logging
import math

from flask import request, jsonify, current_app
import mysql.connector

from apps import get_db_connection
from apps.hierarchy import blueprint
from apps.statistics.aggregation import (
    Scope, select_period_rows, select_teacher_rows, aggregate_enrollment,
    aggregate_student_attendance, aggregate_teacher_attendance, teacher_attendance_breakdown,
    ROW_SEMANTICS,
)
from apps.statistics.queries import fetch_metric_rows
from apps.utils.cache import CacheService
from apps.utils.decorators import role_required

logger = logging.getLogger(__name__)


# Listing/detail queries per collection; the first alias is the entity itself
COLLECTIONS = {
    'regions': {
        'level': 'region',
        'alias': 'r',
        'select': 'r.*',
        'from': 'regions r',
        'filters': {},
    },
    'districts': {
        'level': 'district',
        'alias': 'd',
        'select': 'd.*, r.name AS region_name',
        'from': 'districts d LEFT JOIN regions r ON d.region_id = r.id',
        'filters': {'region_id': 'd.region_id'},
    },
    'circuits': {
        'level': 'circuit',
        'alias': 'c',
        'select': 'c.*, d.name AS district_name, r.name AS region_name',
        'from': '''circuits c
            LEFT JOIN districts d ON c.district_id = d.id
            LEFT JOIN regions r ON d.region_id = r.id''',
        'filters': {'district_id': 'c.district_id', 'region_id': 'd.region_id'},
    },
    'schools': {
        'level': 'school',
        'alias': 's',
        'select': '''s.id, s.name, s.code, s.circuit_id, s.district_id, d.region_id,
            c.name AS circuit_name, d.name AS district_name, r.name AS region_name''',
        'from': '''schools s
            LEFT JOIN circuits c ON s.circuit_id = c.id
            LEFT JOIN districts d ON s.district_id = d.id
            LEFT JOIN regions r ON d.region_id = r.id''',
        'filters': {'region_id': 'd.region_id', 'district_id': 's.district_id', 'circuit_id': 's.circuit_id'},
    },
}

# Child entity counts shown with each level's statistics
CHILD_COUNTS = {
    'region': {
        'districtCount': 'SELECT COUNT(*) AS total FROM districts WHERE region_id = %s',
        'circuitCount': '''SELECT COUNT(*) AS total FROM circuits c
            JOIN districts d ON c.district_id = d.id WHERE d.region_id = %s''',
        'schoolCount': '''SELECT COUNT(*) AS total FROM schools s
            JOIN districts d ON s.district_id = d.id WHERE d.region_id = %s''',
    },
    'district': {
        'circuitCount': 'SELECT COUNT(*) AS total FROM circuits WHERE district_id = %s',
        'schoolCount': 'SELECT COUNT(*) AS total FROM schools WHERE district_id = %s',
    },
    'circuit': {
        'schoolCount': 'SELECT COUNT(*) AS total FROM schools WHERE circuit_id = %s',
    },
    'school': {},
}

# Required body fields and the parent that must exist, per collection
CREATE_RULES = {
    'regions': {'fields': ['name', 'code'], 'parent': None},
    'districts': {'fields': ['name', 'code', 'region_id'], 'parent': ('region_id', 'regions')},
    'circuits': {'fields': ['name', 'code', 'district_id'], 'parent': ('district_id', 'districts')},
    'schools': {'fields': ['name', 'code', 'circuit_id'], 'parent': ('circuit_id', 'circuits')},
}

COLLECTION_PATTERN = '<any(regions, districts, circuits, schools):collection>'


def _positive_int(name, default):
    value = request.args.get(name, default)
    try:
        value = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be a whole number")
    if value < 1:
        raise ValueError(f"{name} must be positive")
    return value


def _where(collection, args):
    meta = COLLECTIONS[collection]
    conditions = []
    params = []

    search = (args.get('search') or '').strip()
    if search:
        conditions.append(f"{meta['alias']}.name LIKE %s")
        params.append(f"%{search}%")

    for param, column in meta['filters'].items():
        value = args.get(param)
        if value:
            conditions.append(f"{column} = %s")
            params.append(value)

    clause = f" WHERE {' AND '.join(conditions)}" if conditions else ''
    return clause, params


def format_school(row):
    """Nest a joined school row the way the school pickers expect it."""
    return {
        'id': row['id'],
        'name': row['name'],
        'code': row.get('code'),
        'regionId': row.get('region_id'),
        'districtId': row.get('district_id'),
        'circuitId': row.get('circuit_id'),
        'region': {'id': row.get('region_id'), 'name': row.get('region_name')},
        'district': {'id': row.get('district_id'), 'name': row.get('district_name')},
        'circuit': {'id': row.get('circuit_id'), 'name': row.get('circuit_name')},
    }


def fetch_entity(collection, entity_id, cursor):
    meta = COLLECTIONS[collection]
    cursor.execute(
        f"SELECT {meta['select']} FROM {meta['from']} WHERE {meta['alias']}.id = %s",
        (entity_id,)
    )
    return cursor.fetchone()


@blueprint.route('/schools', methods=['GET'])
def schools():
    """All schools matching the region/district/circuit filters, by name."""
    where, params = _where('schools', request.args)
    meta = COLLECTIONS['schools']

    try:
        with get_db_connection() as connection:
            with connection.cursor(dictionary=True) as cursor:
                cursor.execute(
                    f"SELECT {meta['select']} FROM {meta['from']}{where} ORDER BY s.name ASC",
                    tuple(params)
                )
                rows = cursor.fetchall()
    except mysql.connector.Error:
        logger.exception("Error fetching schools")
        return jsonify({'success': False, 'error': 'Failed to fetch schools'}), 500

    return jsonify({'schools': [format_school(row) for row in rows]})


@blueprint.route('/<any(regions, districts, circuits):collection>', methods=['GET'])
def list_entities(collection):
    """Paginated regions, districts or circuits with optional name search."""
    try:
        page = _positive_int('page', 1)
        limit = _positive_int('limit', 10)
    except ValueError as e:
        return jsonify({'success': False, 'error': str(e)}), 400

    meta = COLLECTIONS[collection]
    where, params = _where(collection, request.args)

    try:
        with get_db_connection() as connection:
            with connection.cursor(dictionary=True) as cursor:
                cursor.execute(
                    f"SELECT {meta['select']} FROM {meta['from']}{where} "
                    f"ORDER BY {meta['alias']}.name LIMIT %s, %s",
                    tuple(params + [(page - 1) * limit, limit])
                )
                rows = cursor.fetchall()

                cursor.execute(f"SELECT COUNT(*) AS total FROM {meta['from']}{where}", tuple(params))
                total = cursor.fetchone()['total']
    except mysql.connector.Error:
        logger.exception("Error fetching %s", collection)
        return jsonify({'success': False, 'error': f'Failed to fetch {collection}'}), 500

    return jsonify({
        collection: rows,
        'pagination': {
            'total': total,
            'page': page,
            'limit': limit,
            'pages': math.ceil(total / limit),
        }
    })


@blueprint.route(f'/{COLLECTION_PATTERN}/<int:entity_id>', methods=['GET'])
def get_entity(collection, entity_id):
    try:
        with get_db_connection() as connection:
            with connection.cursor(dictionary=True) as cursor:
                entity = fetch_entity(collection, entity_id, cursor)
    except mysql.connector.Error:
        logger.exception("Error fetching %s %s", collection, entity_id)
        return jsonify({'success': False, 'error': 'Failed to fetch record'}), 500

    if not entity:
        return jsonify({'success': False, 'error': f'{COLLECTIONS[collection]["level"].title()} not found'}), 404

    if collection == 'schools':
        entity = format_school(entity)
    return jsonify({'success': True, 'data': entity})


@blueprint.route(f'/{COLLECTION_PATTERN}', methods=['POST'])
@role_required('admin', 'super_admin')
def create_entity(collection):
    """Create a region, district, circuit or school under an existing parent."""
    body = request.get_json(silent=True) or {}
    rules = CREATE_RULES[collection]

    missing = [field for field in rules['fields'] if not body.get(field)]
    if missing:
        return jsonify({'success': False, 'error': f"{', '.join(missing)} required"}), 400

    columns = {field: body[field] for field in rules['fields']}

    try:
        with get_db_connection() as connection:
            with connection.cursor(dictionary=True) as cursor:
                if rules['parent']:
                    parent_field, parent_table = rules['parent']
                    cursor.execute(f"SELECT * FROM {parent_table} WHERE id = %s", (body[parent_field],))
                    parent = cursor.fetchone()
                    if not parent:
                        level = COLLECTIONS[parent_table]['level']
                        return jsonify({'success': False, 'error': f'{level.title()} not found'}), 400

                    if collection == 'schools':
                        # schools carry their district for the statistics filters
                        columns['district_id'] = parent['district_id']
                        for optional in ('address', 'contact', 'type'):
                            columns[optional] = body.get(optional)

                names = ', '.join(columns)
                placeholders = ', '.join(['%s'] * len(columns))
                cursor.execute(
                    f"INSERT INTO {collection} ({names}, created_at, updated_at) "
                    f"VALUES ({placeholders}, NOW(), NOW())",
                    tuple(columns.values())
                )
                connection.commit()
                new_id = cursor.lastrowid
    except mysql.connector.Error:
        logger.exception("Error creating %s", collection)
        return jsonify({'success': False, 'error': 'Failed to create record'}), 500

    level = COLLECTIONS[collection]['level']
    logger.info("%s %s created", level, new_id)
    return jsonify({'success': True, 'message': f'{level.title()} created successfully', 'id': new_id}), 201


# ----------------------
# Entity statistics
# ----------------------

def stats_cache_key(level, entity_id, year, term, week):
    return f"{level}:{entity_id}:stats:{year or 'all'}:{term or 'all'}:{week or 'all'}"


def build_entity_stats(collection, entity_id, year, term, week, row_semantics=None):
    """Entity record, child counts and the three metric summaries for one period."""
    level = COLLECTIONS[collection]['level']
    scope = Scope.of(level, entity_id)

    with get_db_connection() as connection:
        with connection.cursor(dictionary=True) as cursor:
            entity = fetch_entity(collection, entity_id, cursor)
            if not entity:
                return None

            counts = {}
            for name, query in CHILD_COUNTS[level].items():
                cursor.execute(query, (entity_id,))
                counts[name] = cursor.fetchone()['total']

    enrolment_rows = fetch_metric_rows('enrolment', scope, year=year, term=term, week_number=week)
    attendance_rows = fetch_metric_rows('student_attendance', scope, year=year, term=term, week_number=week)
    teacher_rows = fetch_metric_rows('teacher_attendance', scope, year=year, term=term, week_number=week)

    # a school reports its latest (or chosen) week; larger areas add up their schools
    roll_up = level != 'school'

    def pick(rows):
        return select_period_rows(rows, aggregate=roll_up, week_number=week, row_semantics=row_semantics)

    teachers = select_teacher_rows(teacher_rows, aggregate=roll_up, week_number=week, row_semantics=row_semantics)
    teacher_summary = aggregate_teacher_attendance(teachers)
    if teacher_summary:
        teacher_summary.update(teacher_attendance_breakdown(teachers))

    stats = {
        level: format_school(entity) if level == 'school' else entity,
        'enrolment': aggregate_enrollment(pick(enrolment_rows)),
        'studentAttendance': aggregate_student_attendance(pick(attendance_rows)),
        'teacherAttendance': teacher_summary,
    }
    stats.update(counts)
    return stats


@blueprint.route(f'/{COLLECTION_PATTERN}/<int:entity_id>/stats', methods=['GET'])
def entity_stats(collection, entity_id):
    year = request.args.get('year') or current_app.config['DEFAULT_ACADEMIC_YEAR']
    term = request.args.get('term') or current_app.config['DEFAULT_TERM']
    row_semantics = request.args.get('rowSemantics') or None
    try:
        week = _positive_int('week', 0) if request.args.get('week') else None
    except ValueError as e:
        return jsonify({'success': False, 'error': str(e)}), 400
    if row_semantics is not None and row_semantics not in ROW_SEMANTICS:
        return jsonify({'success': False, 'error': 'Invalid rowSemantics'}), 400

    level = COLLECTIONS[collection]['level']
    cache_key = stats_cache_key(level, entity_id, year, term, week)
    if row_semantics:
        cache_key += f":{row_semantics}"

    try:
        stats = CacheService.get_or_set(
            cache_key,
            lambda: build_entity_stats(collection, entity_id, year, term, week, row_semantics),
        )
    except mysql.connector.Error:
        logger.exception("Error fetching %s %s statistics", level, entity_id)
        return jsonify({'success': False, 'error': f'Failed to fetch {level} statistics'}), 500

    if stats is None:
        return jsonify({'success': False, 'error': f'{level.title()} not found'}), 404

    return jsonify({'success': True, 'data': stats})
