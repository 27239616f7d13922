import os


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-change")
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", "sqlite:///zerosampah.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Upstream identity gateway puts the authenticated external user ID here
    IDENTITY_HEADER = os.environ.get("IDENTITY_HEADER", "X-User-Id")
    USER_WEBHOOK_SECRET = os.environ.get("USER_WEBHOOK_SECRET", "")

    GEMINI_API_KEY = os.environ.get("GEMINI_API_KEY", "")
    GEMINI_API_URL = os.environ.get(
        "GEMINI_API_URL",
        "https://generativelanguage.googleapis.com/v1beta/models/gemini-1.5-flash:generateContent",
    )
    AI_PROXY_TIMEOUT = int(os.environ.get("AI_PROXY_TIMEOUT", "30"))

    # Point rules
    REPORT_POINTS = int(os.environ.get("REPORT_POINTS", "10"))
    COLLECTION_POINTS = int(os.environ.get("COLLECTION_POINTS", "50"))
    ATTENDANCE_POINTS = int(os.environ.get("ATTENDANCE_POINTS", "20"))

    QR_TOKEN_BYTES = int(os.environ.get("QR_TOKEN_BYTES", "32"))
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    USER_WEBHOOK_SECRET = "whsec_dGVzdC13ZWJob29rLXNlY3JldA=="
    GEMINI_API_KEY = "test-key"
    GEMINI_API_URL = "https://ai.example.test/generate"
