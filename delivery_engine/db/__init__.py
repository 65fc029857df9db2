"""
SQLAlchemy reference adapter (models, engine/session management, repositories).
"""
