import logging
import os
import sys
from typing import Any, Callable, Mapping, Optional, Union

import flask.app
from flask import Flask
from flask_sqlalchemy import SQLAlchemy

import dynarest
from .definitions import load_definitions
from .json_encoder import DynarestJSONProvider
from .registry import init_registry
from .request import DynarestRequest


class Dynarest:
    """This class configures the Flask application to serve the entity collections
    :param app: a Flask application.
    :param definitions: entity definitions: a mapping or the path of a YAML/JSON file
    :param LOGLEVEL: loglevel configuration variable, values from logging module (0: trace, .. 50: critical)
    """

    # Configuration settings are stored as class variables
    DEFAULT_LIMIT = 1000
    MAX_LIMIT = 100000
    COERCE_IN_LIST = True
    ALLOW_DELETE_BY_QUERY = False
    # collation name => SQL collation, e.g. {"nocase": "NOCASE"}
    COLLATIONS: Mapping[str, str] = {}
    URL_PREFIX = "/v1"
    LOGLEVEL = logging.WARNING

    def __init__(self, app: flask.app.Flask, *args, **kwargs) -> None:
        self.app = app
        self.user_loader: Optional[Callable[[], Any]] = None
        self.registry = None
        if app is not None:
            self.init_app(app, *args, **kwargs)

    def init_app(
        self,
        app: flask.app.Flask,
        definitions: Union[str, Mapping[str, Any], None] = None,
        app_db: Optional[SQLAlchemy] = None,
        user_loader: Optional[Callable[[], Any]] = None,
        create_tables: bool = True,
        seed: bool = True,
        **kwargs,
    ) -> None:
        """
        Application initialization: register the entities and create their tables
        :param app_db: Flask-SQLAlchemy instance, default the one registered on the app
        :param user_loader: callable returning the dynarest.User of the current request
        :param create_tables: create the missing tables
        :param seed: insert the seed data of empty tables
        """
        if not isinstance(app, Flask):  # pragma: no cover
            raise TypeError("'app' should be Flask.")

        if app_db is None:
            app_db = app.extensions["sqlalchemy"]

        dynarest.DB = self.db = app_db
        self.user_loader = user_loader

        app.request_class = DynarestRequest
        app.json = DynarestJSONProvider(app)
        app.url_map.strict_slashes = False
        app.config.setdefault("ERROR_404_HELP", False)
        app.extensions["dynarest"] = self

        if app.config.get("DEBUG", False):
            log.setLevel(logging.DEBUG)

        for conf_name, conf_val in kwargs.items():
            setattr(Dynarest, conf_name, conf_val)

        if definitions is not None:
            if isinstance(definitions, str):
                definitions = load_definitions(definitions)
            collations = app.config.get("COLLATIONS", Dynarest.COLLATIONS)
            self.registry = init_registry(definitions, collations)
            with app.app_context():
                if create_tables:
                    self.registry.create_all(self.db.engine)
                if seed:
                    self.registry.insert_seed_data(self.db.session)
                    self.db.session.commit()

        # pylint: disable=unused-argument,unused-variable
        @app.teardown_appcontext
        def shutdown_session(exception=None):
            """cfr. http://flask.pocoo.org/docs/0.12/patterns/sqlalchemy/"""
            self.db.session.remove()

    @staticmethod
    def init_logging(loglevel: int = logging.WARNING) -> logging.Logger:
        """
        Specify the log format used in the webserver logs
        """
        log = logging.getLogger(__name__)
        if log.level == logging.NOTSET:
            handler = logging.StreamHandler(sys.stderr)
            formatter = logging.Formatter("[%(asctime)s] %(levelname)s: %(message)s")
            handler.setFormatter(formatter)
            log.setLevel(loglevel)
            log.addHandler(handler)
        return log


#
# DB and logging initialization
#
DB = SQLAlchemy()

try:
    DEBUG = os.getenv("DEBUG", logging.WARNING)
    LOGLEVEL = int(DEBUG)
except ValueError:  # pragma: no cover
    print(f'Invalid LogLevel in DEBUG Environment Variable! "{DEBUG}"')
    LOGLEVEL = logging.INFO

log = Dynarest.init_logging(LOGLEVEL)
