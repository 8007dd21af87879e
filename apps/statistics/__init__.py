from flask import Blueprint

blueprint = Blueprint(
    'statistics_blueprint',
    __name__,
    url_prefix='/api/statistics'
)
