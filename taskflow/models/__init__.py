"""
Ops Console — Task Workflow Engine
Shared SQLAlchemy handle for every model module.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
