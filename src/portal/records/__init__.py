"""Portal records -- SQLAlchemy models and the repository the FileMaker bridge writes through."""
