# config.py
import os

BASE_DIR = os.path.dirname(os.path.abspath(__file__))


def load_dotenv(path=os.path.join(BASE_DIR, '.env')):
    if not os.path.exists(path):
        return
    with open(path, 'r', encoding='utf-8') as env_file:
        for raw_line in env_file:
            line = raw_line.strip()
            if not line or line.startswith('#') or '=' not in line:
                continue
            key, value = line.split('=', 1)
            key = key.strip()
            if key:
                os.environ.setdefault(key, value.strip().strip("'").strip('"'))


load_dotenv()


class Config:
    CAMPUS_DB_PATH = os.environ.get('CAMPUS_DB_PATH', os.path.join(BASE_DIR, 'database.db'))
    AI_SERVER_URL = os.environ.get('AI_SERVER_URL', 'http://localhost:3001/ai')
    AI_TIMEOUT_SECONDS = float(os.environ.get('AI_TIMEOUT_SECONDS', '60'))
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()
    POSTER_MAX_SIZE = int(os.environ.get('POSTER_MAX_SIZE', '1024'))
    MAX_CONTENT_LENGTH = 10 * 1024 * 1024
    SECRET_KEY = os.environ.get('SECRET_KEY', 'change-this-secret-in-production')
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'
    CORS_ORIGINS = [
        o.strip()
        for o in os.environ.get(
            'CORS_ORIGINS',
            'http://localhost:3000,http://127.0.0.1:3000,http://localhost:5173,http://127.0.0.1:5173',
        ).split(',')
        if o.strip()
    ]
