"""
FlowVision
SQLAlchemy models package.

The shared ``db`` handle lives here so every model module and service can do
``from flowvision.models import db`` without touching the app factory.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
