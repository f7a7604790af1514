"""
Configuration settings for the Taskboard application.
"""

import os

# Base directory
BASE_DIR = os.path.dirname(os.path.abspath(__file__))

# Database configuration (supports Docker override via environment variable)
DATABASE_PATH = os.getenv('DATABASE_PATH', os.path.join(BASE_DIR, 'taskboard.db'))
DATABASE_URL = os.getenv('DATABASE_URL', f'sqlite:///{DATABASE_PATH}')

# Upload configuration (supports Docker override via environment variable)
UPLOAD_FOLDER = os.getenv('UPLOAD_FOLDER', os.path.join(BASE_DIR, 'uploads'))
MAX_CONTENT_LENGTH = 10 * 1024 * 1024  # 10MB max file size
ALLOWED_EXTENSIONS = {'pdf'}
ALLOWED_EMAIL_EXTENSIONS = {'eml', 'txt'}

# Ensure folders exist
os.makedirs(UPLOAD_FOLDER, exist_ok=True)
os.makedirs(os.path.dirname(DATABASE_PATH), exist_ok=True) if os.path.dirname(DATABASE_PATH) else None

LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()

# AI extraction
OPENAI_API_KEY = os.getenv('OPENAI_API_KEY', '')
OPENAI_MODEL = os.getenv('OPENAI_MODEL', 'gpt-4o')
OPENAI_STANDARD_MODEL = os.getenv('OPENAI_STANDARD_MODEL', 'o4-mini')
OPENAI_THINKING_MODEL = os.getenv('OPENAI_THINKING_MODEL', 'o3')
OPENAI_TIMEOUT_SECONDS = float(os.getenv('OPENAI_TIMEOUT_SECONDS', '120'))

# Freshservice ticketing
FRESHSERVICE_DOMAIN = os.getenv('FRESHSERVICE_DOMAIN', '')
FRESHSERVICE_API_TOKEN = os.getenv('FRESHSERVICE_API_TOKEN', '')
FRESHSERVICE_PORTAL_URL = os.getenv(
    'FRESHSERVICE_PORTAL_URL',
    f'https://{FRESHSERVICE_DOMAIN}' if FRESHSERVICE_DOMAIN else ''
)
FRESHSERVICE_REQUESTER_EMAIL = os.getenv('FRESHSERVICE_REQUESTER_EMAIL', '')
FRESHSERVICE_WORKSPACE_ID = int(os.getenv('FRESHSERVICE_WORKSPACE_ID', '2'))
FRESHSERVICE_CATEGORY_FIELD_ID = int(os.getenv('FRESHSERVICE_CATEGORY_FIELD_ID', '1000158814'))

# Task board behaviour
UNDO_WINDOW_SECONDS = float(os.getenv('UNDO_WINDOW_SECONDS', '7'))

# Background extraction jobs
JOB_MAX_AGE_SECONDS = int(os.getenv('JOB_MAX_AGE_SECONDS', '3600'))
JOB_HEARTBEAT_SECONDS = int(os.getenv('JOB_HEARTBEAT_SECONDS', '15'))
JOB_POLL_INTERVAL_SECONDS = float(os.getenv('JOB_POLL_INTERVAL_SECONDS', '2'))
JOB_INACTIVITY_TIMEOUT_SECONDS = float(os.getenv('JOB_INACTIVITY_TIMEOUT_SECONDS', '120'))

# Backup/restore
RESTORE_CHUNK_SIZE = 100
