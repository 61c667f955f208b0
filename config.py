import os
from dotenv import load_dotenv

# Load environment variables from .env
load_dotenv()

# Project base path
basedir = os.path.abspath(os.path.dirname(__file__))

class Config:
    """Base configuration."""
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'change-me'
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///' + os.path.join(basedir, 'app.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    # --- Hosted backend (auth, tables, remote procedures) ---
    BACKEND_URL = os.environ.get('SUPABASE_URL', '')
    BACKEND_ANON_KEY = os.environ.get('SUPABASE_ANON_KEY', '')
    # Only used by the seed-boxes command
    BACKEND_SERVICE_KEY = os.environ.get('SUPABASE_SERVICE_ROLE_KEY')
    BACKEND_TIMEOUT = int(os.environ.get('BACKEND_TIMEOUT', '10'))

    # --- Generative AI ---
    GEMINI_API_KEY = os.environ.get('GEMINI_API_KEY')
    GEMINI_MODEL = os.environ.get('GEMINI_MODEL', 'gemini-2.0-flash')
    GEMINI_API_BASE = 'https://generativelanguage.googleapis.com/v1beta'

    # --- UI timings ---
    ORDERS_REFRESH_SECONDS = 60
    PIN_REDIRECT_SECONDS = 2

    # --- E-mail ---
    MAIL_SERVER = os.environ.get('MAIL_SERVER', 'smtp.gmail.com')
    MAIL_PORT = int(os.environ.get('MAIL_PORT', '587'))
    MAIL_USE_TLS = True
    MAIL_USERNAME = os.environ.get('MAIL_USERNAME')
    MAIL_PASSWORD = os.environ.get('MAIL_PASSWORD')
    MAIL_DEFAULT_SENDER = os.environ.get('MAIL_DEFAULT_SENDER') or MAIL_USERNAME
