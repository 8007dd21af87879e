import logging

from apps import get_db_connection

logger = logging.getLogger(__name__)


HIERARCHY_COLUMNS = 'id, school_id, circuit_id, district_id, region_id'

POPULATION_COLUMNS = '''
    normal_boys_total, normal_girls_total,
    special_boys_total, special_girls_total,
    total_population'''

METRIC_TABLES = {
    'enrolment': {
        'table': 'school_enrolment_totals',
        'columns': f'{HIERARCHY_COLUMNS},{POPULATION_COLUMNS}, term, week_number, year',
    },
    'student_attendance': {
        'table': 'school_student_attendance_totals',
        'columns': f'{HIERARCHY_COLUMNS},{POPULATION_COLUMNS}, term, week_number, year',
    },
    'teacher_attendance': {
        'table': 'teacher_attendances',
        'columns': f'''{HIERARCHY_COLUMNS},
            school_session_days, days_present, days_punctual, days_absent,
            days_absent_with_permission, days_absent_without_permission,
            lesson_plan_ratings, excises_given, excises_marked, position,
            week_number, term, year, created_at''',
    },
}

PERIODS_TABLE = METRIC_TABLES['enrolment']['table']


def _scope_clause(scope, alias=''):
    if scope is None:
        return '', []
    prefix = f'{alias}.' if alias else ''
    return f' AND {prefix}{scope.column} = %s', [scope.value]


def build_metric_query(metric, scope, year=None, term=None, week_number=None):
    """Returns (sql, params) for the rows of one metric table, newest week first."""
    if metric not in METRIC_TABLES:
        raise ValueError(f"Unknown metric: {metric}")

    meta = METRIC_TABLES[metric]
    query = f"SELECT {meta['columns']} FROM {meta['table']} WHERE 1=1"
    params = []

    if year is not None:
        query += ' AND year = %s'
        params.append(year)
    if term is not None:
        query += ' AND term = %s'
        params.append(term)
    if week_number is not None:
        query += ' AND week_number = %s'
        params.append(week_number)

    clause, scope_params = _scope_clause(scope)
    query += clause
    params.extend(scope_params)

    query += ' ORDER BY week_number DESC'
    return query, params


def build_period_query(scope, table=PERIODS_TABLE):
    query = f'SELECT DISTINCT year, term, week_number FROM {table} WHERE 1=1'
    clause, params = _scope_clause(scope)
    query += clause
    query += ' ORDER BY year DESC, term DESC, week_number DESC'
    return query, params


def fetch_metric_rows(metric, scope, year=None, term=None, week_number=None):
    query, params = build_metric_query(metric, scope, year=year, term=term, week_number=week_number)
    logger.debug("%s query: %s params=%s", metric, query, params)

    with get_db_connection() as connection:
        with connection.cursor(dictionary=True) as cursor:
            cursor.execute(query, tuple(params))
            rows = cursor.fetchall()

    logger.info("%s query returned %d rows", metric, len(rows))
    return rows


def fetch_period_triples(scope):
    query, params = build_period_query(scope)

    with get_db_connection() as connection:
        with connection.cursor(dictionary=True) as cursor:
            cursor.execute(query, tuple(params))
            rows = cursor.fetchall()

    return [(row['year'], row['term'], row['week_number']) for row in rows]
