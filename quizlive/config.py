import os


class Config:
    HOST = os.environ.get('HOST', '0.0.0.0')
    PORT = int(os.environ.get('PORT', '8000'))
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    # Comma separated, '*' allows any origin
    CORS_ALLOWED_ORIGINS = os.environ.get('CORS_ALLOWED_ORIGINS', 'http://localhost:5173')
    # Delay between "game started" and the first question (seconds)
    LEAD_IN_SECONDS = float(os.environ.get('LEAD_IN_SECONDS', '3'))
    # How long a finished session stays readable before eviction (seconds)
    FINISHED_SESSION_TTL_SEC = float(os.environ.get('FINISHED_SESSION_TTL_SEC', '60'))
    NICKNAME_MAX_LENGTH = int(os.environ.get('NICKNAME_MAX_LENGTH', '20'))
    QUIZ_CATALOG_PATH = os.environ.get('QUIZ_CATALOG_PATH', 'data/quizzes.json')
    # Empty disables score persistence
    DATABASE_PATH = os.environ.get('DATABASE_PATH', 'quizlive.db')

    @classmethod
    def cors_origins(cls):
        value = (cls.CORS_ALLOWED_ORIGINS or '').strip()
        if value == '*':
            return '*'
        return [o.strip() for o in value.split(',') if o.strip()]
