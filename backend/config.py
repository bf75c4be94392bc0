import os

class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-this-in-prod'
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///care.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    JWT_SECRET_KEY = os.environ.get('JWT_SECRET_KEY') or 'jwt-secret-key-change-this-in-prod'

    # SOS location lookup: favour getting *a* fix quickly over a precise one
    SOS_LOCATION_WAIT_MS = int(os.environ.get('SOS_LOCATION_WAIT_MS', 10000))
    LOCATION_MAX_AGE_MS = int(os.environ.get('LOCATION_MAX_AGE_MS', 300000))
    LOCATION_HIGH_ACCURACY = os.environ.get('LOCATION_HIGH_ACCURACY', 'false').lower() == 'true'

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
