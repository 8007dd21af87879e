"""
Aggregation of weekly school indicator rows into scope/period summaries.

Everything here works on rows that were already fetched (dicts as returned
by a ``dictionary=True`` cursor) and returns freshly built values. Nothing
in this module opens a connection.
"""
from collections import namedtuple
from decimal import Decimal, ROUND_HALF_UP


# (level, query parameter, filter column), highest precedence first
SCOPE_PRECEDENCE = (
    ('school', 'schoolId', 'school_id'),
    ('circuit', 'circuitId', 'circuit_id'),
    ('district', 'districtId', 'district_id'),
    ('region', 'regionId', 'region_id'),
)

SCOPE_COLUMNS = {level: column for level, _, column in SCOPE_PRECEDENCE}

ROW_SEMANTICS = ('snapshot', 'cumulative')


class Scope(namedtuple('Scope', ['level', 'column', 'value'])):
    """A single hierarchy filter. ``None`` stands for an unscoped query."""

    __slots__ = ()

    @classmethod
    def of(cls, level, value):
        if level not in SCOPE_COLUMNS:
            raise ValueError(f"Unknown scope level: {level}")
        return cls(level, SCOPE_COLUMNS[level], value)

    @classmethod
    def school(cls, value):
        return cls.of('school', value)

    @classmethod
    def circuit(cls, value):
        return cls.of('circuit', value)

    @classmethod
    def district(cls, value):
        return cls.of('district', value)

    @classmethod
    def region(cls, value):
        return cls.of('region', value)


def _is_present(value):
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip() != ''
    return True


def resolve_scope(candidates):
    """
    Pick the one filter that applies to a request.

    ``candidates`` may use query parameter names (``schoolId``) or column
    names (``school_id``). School wins over circuit, circuit over district,
    district over region; the remaining identifiers are ignored.
    Returns ``None`` when no identifier is present.
    """
    if not candidates:
        return None

    for level, param, column in SCOPE_PRECEDENCE:
        value = candidates.get(param)
        if not _is_present(value):
            value = candidates.get(column)
        if _is_present(value):
            if isinstance(value, str):
                value = value.strip()
            return Scope(level, column, value)

    return None


# ----------------------
# Period selection
# ----------------------

def _week(row):
    week = row.get('week_number')
    return int(week) if week is not None else None


def latest_week(rows):
    """Highest week number present in ``rows`` or None."""
    weeks = [w for w in (_week(row) for row in rows) if w is not None]
    return max(weeks) if weeks else None


def rows_for_week(rows, week_number):
    week_number = int(week_number)
    return [row for row in rows if _week(row) == week_number]


def select_period_rows(rows, aggregate=False, week_number=None, row_semantics=None):
    """
    Choose the rows of one (year, term) that a reducer should consume.

    - not aggregating, week given: the rows of that week
    - not aggregating, no week: the single most recent row
    - aggregating: every row, or only the latest week's rows when the rows
      carry running totals (``row_semantics='cumulative'``)
    """
    if row_semantics is not None and row_semantics not in ROW_SEMANTICS:
        raise ValueError(f"Unknown row semantics: {row_semantics}")

    rows = list(rows or [])

    if aggregate:
        if row_semantics == 'cumulative':
            week = latest_week(rows)
            return rows_for_week(rows, week) if week is not None else rows
        return rows

    if _is_present(week_number):
        return rows_for_week(rows, week_number)

    if not rows:
        return []

    # sorted() is stable, so ties keep the upstream order
    ordered = sorted(rows, key=lambda row: _week(row) or 0, reverse=True)
    return ordered[:1]


def select_teacher_rows(rows, aggregate=False, week_number=None, row_semantics=None):
    """
    Period selection for teacher attendance, which has one row per teacher.

    Without ``aggregate`` the whole chosen (or latest) week is kept rather
    than a single row; aggregating behaves like ``select_period_rows``.
    """
    if aggregate:
        return select_period_rows(rows, aggregate=True, row_semantics=row_semantics)

    rows = list(rows or [])
    week = week_number if _is_present(week_number) else latest_week(rows)
    return rows_for_week(rows, week) if week is not None else []


# ----------------------
# Reducers
# ----------------------

def round2(value):
    """Round half up to two decimals, e.g. 66.665 -> 66.67."""
    return float(Decimal(str(value)).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP))


def _total(rows, *fields):
    return sum((row.get(field) or 0) for row in rows for field in fields)


def _rate(numerator, denominator):
    if not denominator:
        return 0
    return round2(numerator / denominator * 100)


def aggregate_enrollment(rows):
    if not rows:
        return None

    boys = _total(rows, 'normal_boys_total', 'special_boys_total')
    girls = _total(rows, 'normal_girls_total', 'special_girls_total')
    # total_population is stored separately and is not reconciled with boys + girls
    total_students = _total(rows, 'total_population')

    return {
        'totalStudents': total_students,
        'genderDistribution': {'boys': boys, 'girls': girls},
    }


PRESENT_FIELDS = (
    'normal_boys_total', 'normal_girls_total',
    'special_boys_total', 'special_girls_total',
)


def student_attendance_rate(row):
    """Attendance rate of a single attendance row."""
    return _rate(_total([row], *PRESENT_FIELDS), row.get('total_population') or 0)


def aggregate_student_attendance(rows):
    if not rows:
        return None

    total_enrolled = _total(rows, 'total_population')
    total_present = _total(rows, *PRESENT_FIELDS)

    return {
        'totalEnrolled': total_enrolled,
        'totalPresent': total_present,
        'attendanceRate': _rate(total_present, total_enrolled),
    }


def aggregate_teacher_attendance(rows):
    if not rows:
        return None

    session_days = _total(rows, 'school_session_days')
    days_present = _total(rows, 'days_present')
    # column names follow the survey schema ("excises")
    exercises_given = _total(rows, 'excises_given')
    exercises_marked = _total(rows, 'excises_marked')

    return {
        'totalTeachers': len(rows),
        'attendanceRate': _rate(days_present, session_days),
        'exerciseCompletionRate': _rate(exercises_marked, exercises_given),
    }


def teacher_attendance_breakdown(rows):
    """Day and exercise totals behind the teacher rates; zeros for no rows."""
    days_present = _total(rows, 'days_present')
    days_punctual = _total(rows, 'days_punctual')

    return {
        'totalDaysPresent': days_present,
        'totalDaysPunctual': days_punctual,
        'totalDaysAbsent': _total(rows, 'days_absent'),
        'totalExercisesGiven': _total(rows, 'excises_given'),
        'totalExercisesMarked': _total(rows, 'excises_marked'),
        'punctualityRate': _rate(days_punctual, days_present),
    }


# ----------------------
# Period catalog
# ----------------------

def _term_key(term):
    try:
        return int(term)
    except (TypeError, ValueError):
        return 0


def build_period_catalog(triples, most_recent_first=False):
    """
    Group (year, term, week) triples into {year: {term: [weeks]}}.

    Years and terms keep the order they are first seen in, which is the
    recency order when the rows come from the periods query. Pass
    ``most_recent_first=True`` to have years and terms ordered here instead.
    Weeks are always ascending.
    """
    grouped = {}
    for year, term, week in triples:
        weeks = grouped.setdefault(year, {}).setdefault(term, [])
        if week is not None and week not in weeks:
            weeks.append(week)

    years = list(grouped)
    if most_recent_first:
        years.sort(key=str, reverse=True)

    catalog = {}
    for year in years:
        terms = list(grouped[year])
        if most_recent_first:
            terms.sort(key=_term_key, reverse=True)
        catalog[year] = {term: sorted(grouped[year][term], key=int) for term in terms}

    return catalog


def format_period_catalog(catalog):
    """List form of a period catalog, as served to the period picker."""
    return [
        {
            'year': year,
            'terms': [{'term': term, 'weeks': weeks} for term, weeks in terms.items()],
        }
        for year, terms in catalog.items()
    ]
