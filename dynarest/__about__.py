__version__ = "1.0.0"
__description__ = "dynarest : dynamic REST APIs over SQLAlchemy from declarative entity definitions"
