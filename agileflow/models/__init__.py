"""
AgileFlow
Database models package.

``db`` is the single Flask-SQLAlchemy handle; model modules import it from
here and ``create_app`` binds it with ``db.init_app(app)``.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
