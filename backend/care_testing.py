"""Shared fixtures for the unittest suites: a throwaway app and fake location providers."""
import os
import tempfile
import threading
import unittest

from app import create_app
from location import LocationProvider
from models import db


class AppTestCase(unittest.TestCase):
    # A file database so worker threads see the same data as the request thread
    push_context = True

    def setUp(self):
        self.db_fd, self.db_path = tempfile.mkstemp(suffix='.db')
        self.app = create_app({
            'TESTING': True,
            'SQLALCHEMY_DATABASE_URI': f'sqlite:///{self.db_path}',
            'SOS_LOCATION_WAIT_MS': 2000,
        })
        self.client = self.app.test_client()
        self.ctx = None
        if self.push_context:
            self.ctx = self.app.app_context()
            self.ctx.push()

    def tearDown(self):
        if self.ctx is not None:
            self.ctx.pop()
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.engine.dispose()
        os.close(self.db_fd)
        os.unlink(self.db_path)


class NeverRespondingProvider(LocationProvider):
    def __init__(self):
        self.stopped = False

    def get_current_position(self, on_success, on_error, options):
        pass

    def stop(self):
        self.stopped = True


class DelayedProvider(LocationProvider):
    """Answers once after `delay` seconds, with a position or an error."""

    def __init__(self, delay, position=None, error=None):
        self.delay = delay
        self.position = position
        self.error = error
        self.stopped = False
        self.options = None

    def get_current_position(self, on_success, on_error, options):
        self.options = options

        def fire():
            if self.error is not None:
                on_error(self.error)
            else:
                on_success(self.position)

        timer = threading.Timer(self.delay, fire)
        timer.daemon = True
        timer.start()

    def stop(self):
        self.stopped = True
