import logging

from flask import Flask, g, redirect, request
from config import Config
from brankas.extensions import db, bcrypt, login_manager, migrate, mail, backend
from brankas.services.backend import BackendError
from brankas.session import SessionUser, get_holder, load_session_holder, lookup_is_admin, requires_admin, resolve_redirect


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)
    app.logger.setLevel(getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO))

    db.init_app(app)
    bcrypt.init_app(app)
    login_manager.init_app(app)
    migrate.init_app(app, db)
    mail.init_app(app)
    backend.init_app(app)

    @login_manager.request_loader
    def load_user_from_session(req):
        auth_session = get_holder().session
        return SessionUser(auth_session) if auth_session else None

    @app.before_request
    def guard_routes():
        if request.endpoint == 'static':
            return None
        holder = load_session_holder()
        auth_session = holder.session
        is_admin = False
        if auth_session is not None and requires_admin(request.path):
            try:
                is_admin = lookup_is_admin(app.extensions['backend'].client(holder.access_token), auth_session.user_id)
            except BackendError as e:
                app.logger.warning("Admin lookup failed for %s: %s", auth_session.user_id, e.message)
        g.is_admin = is_admin
        target = resolve_redirect(request.path, auth_session, is_admin)
        if target and target != request.path:
            return redirect(target)
        return None

    from brankas.utils import register_template_filters
    register_template_filters(app)

    from brankas.routes.auth import auth as auth_blueprint
    app.register_blueprint(auth_blueprint)

    from brankas.routes.main import main as main_blueprint
    app.register_blueprint(main_blueprint)

    from brankas.routes.admin import admin as admin_blueprint
    app.register_blueprint(admin_blueprint, url_prefix='/admin')

    from brankas.routes.api import api as api_blueprint
    app.register_blueprint(api_blueprint, url_prefix='/api')

    with app.app_context():
        from brankas import models  # noqa: F401
        db.create_all()

    return app
