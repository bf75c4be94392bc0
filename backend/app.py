import logging

from flask import Flask
from flask_jwt_extended import JWTManager
from config import Config
from models import db
from routes import api


def configure_logging(app):
    logging.basicConfig(
        level=app.config.get('LOG_LEVEL', 'INFO'),
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s',
    )


def create_app(test_config=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    configure_logging(app)
    db.init_app(app)
    JWTManager(app)

    app.register_blueprint(api)

    with app.app_context():
        db.create_all()

    return app

if __name__ == '__main__':
    app = create_app()
    # Host '0.0.0.0' allows access from other devices on the LAN
    app.run(host='0.0.0.0', port=5000, debug=True)
