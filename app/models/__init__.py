"""
F07 IT Change Request Platform
Shared SQLAlchemy handle.

All model modules import ``db`` from here; the application factory binds it
with ``db.init_app(app)``.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
