from flask import Blueprint

blueprint = Blueprint(
    'hierarchy_blueprint',
    __name__,
    url_prefix='/api'
)
