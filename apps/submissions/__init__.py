from flask import Blueprint

blueprint = Blueprint(
    'submissions_blueprint',
    __name__,
    url_prefix='/api/submissions'
)
