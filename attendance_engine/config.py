import os
from dotenv import load_dotenv

load_dotenv()


def _to_int(value, default):
    if value is None:
        return default
    text = str(value).strip()
    if not text:
        return default
    try:
        return int(text)
    except ValueError:
        return default


class Config:
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key')
    DATABASE_URL = os.getenv('DATABASE_URL', '')
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
    UPLOAD_FOLDER = os.path.join(os.path.dirname(os.path.dirname(__file__)), 'uploads')

    # Left-pad digit-only device tokens to this width; 0 disables padding.
    BIOMETRICS_TOKEN_PAD_LENGTH = max(0, _to_int(os.getenv('BIOMETRICS_TOKEN_PAD_LENGTH'), 0))
    SESSION_TTL_SECONDS = max(1, _to_int(os.getenv('SESSION_TTL_SECONDS'), 3600))
    # Max identifiers per bulk query against the persistence collaborator.
    PRELOAD_CHUNK_SIZE = max(1, _to_int(os.getenv('PRELOAD_CHUNK_SIZE'), 200))
    CREATE_TABLES = os.getenv('CREATE_TABLES', '').strip().lower() in ('1', 'true', 'yes')
