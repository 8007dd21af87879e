from datetime import datetime

import pytz
from flask import current_app


def get_local_time():
    """Returns the current datetime in the configured timezone (Africa/Accra by default)."""
    return datetime.now(pytz.timezone(current_app.config['TIMEZONE']))


def get_local_time_naive():
    """Local time without tzinfo, for MySQL DATETIME columns."""
    return get_local_time().replace(tzinfo=None)
