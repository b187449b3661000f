from flask import Flask
from flask_cors import CORS

from config.settings import Config


def create_app(config_class=Config):
    """
    Build the operator Flask app exposing the maintenance admin endpoints.
    """
    app = Flask(__name__)
    app.config.from_object(config_class)

    CORS(app, origins=app.config.get('CORS_ORIGINS', '*'))

    from kine_app.api import admin_api
    app.register_blueprint(admin_api.bp, url_prefix='/admin/maintenance')

    @app.errorhandler(404)
    def not_found(error):
        return {'success': False, 'error': 'Not found'}, 404

    @app.errorhandler(500)
    def internal_error(error):
        return {'success': False, 'error': 'Internal server error'}, 500

    return app
