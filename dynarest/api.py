# flask_restful API exposing the entity collections
from functools import wraps
from http import HTTPStatus
from typing import Any, Callable, Optional

import werkzeug
from flask import current_app, jsonify, make_response, request
from flask.app import Flask
from flask_restful import Api, Resource, abort

import dynarest
from . import model_functions
from .config import get_config, is_debug
from .context import ANONYMOUS, RequestContext
from .csv_export import to_csv
from .errors import DynarestError
from .registry import get_registry

IGNORED_ATTRIBUTES_HEADER = "Ignored-Attributes"


class DynarestAPI(Api):
    """
    Subclass of the flask_restful Api class registering the generic entity routes:

        api = DynarestAPI(app, definitions="entities.yaml", user_loader=load_user)

    The routes are served for every entity in the registry, the registry can be
    reloaded without registering the routes again.
    """

    def __init__(self, app: Flask, prefix: Optional[str] = None, definitions=None, user_loader: Optional[Callable] = None, **kwargs):
        """
        :param app: Flask application
        :param prefix: url prefix, default URL_PREFIX
        :param definitions: entity definitions, mapping or file path
        :param user_loader: callable returning the dynarest.User of the current request
        :param kwargs: passed to dynarest.Dynarest
        """
        dynarest.Dynarest(app, definitions=definitions, user_loader=user_loader, **kwargs)
        if prefix is None:
            prefix = app.config.get("URL_PREFIX", get_config("URL_PREFIX"))
        super().__init__(app, prefix=prefix)
        self.expose_entities()

    def expose_entities(self) -> None:
        self.add_resource(api_decorator(EntityCountAPI), "/db/<string:entity>/count", endpoint="entity_count")
        self.add_resource(api_decorator(EntityBatchAPI), "/db/<string:entity>/batch", endpoint="entity_batch")
        self.add_resource(api_decorator(EntityCollectionAPI), "/db/<string:entity>", endpoint="entity_collection")
        self.add_resource(api_decorator(EntityInstanceAPI), "/db/<string:entity>/<string:object_id>", endpoint="entity_instance")
        self.add_resource(api_decorator(EntityOwnerAPI), "/db/<string:entity>/<string:object_id>/_acl/owner", endpoint="entity_owner")
        self.add_resource(
            api_decorator(EntityGroupAPI), "/db/<string:entity>/<string:object_id>/_acl/groups/<string:group>", endpoint="entity_group"
        )
        self.add_resource(
            api_decorator(EntityBinaryAPI), "/db/<string:entity>/<string:object_id>/<string:attribute>/<path:filename>", endpoint="entity_binary"
        )


def request_context() -> RequestContext:
    """
    :return: RequestContext of the current request, the user comes from the user loader
    """
    extension = current_app.extensions.get("dynarest")
    user_loader = getattr(extension, "user_loader", None)
    user = user_loader() if user_loader else None
    return RequestContext(user=user or ANONYMOUS)


def get_entity(code: str):
    """
    :return: the EntityModel of `code` when it serves the request method
    """
    entity = get_registry().lookup(code)
    if request.method not in entity.definition.methods:
        raise werkzeug.exceptions.MethodNotAllowed(valid_methods=list(entity.definition.methods))
    return entity


def item_response(result, status_code=HTTPStatus.OK):
    response = make_response(jsonify(result["item"]), status_code)
    if result["skippedFields"]:
        response.headers[IGNORED_ATTRIBUTES_HEADER] = ",".join(result["skippedFields"])
    return response


class EntityCollectionAPI(Resource):
    def get(self, entity):
        """
        Find the records matching the query string, ?_type=csv downloads them as CSV
        """
        model = get_entity(entity)
        result = model_functions.find(model, request.query_params, request_context())
        if (request.args.get("_type") or "").lower() == "csv":
            if not model.definition.csv:
                raise werkzeug.exceptions.BadRequest(f"CSV export is disabled for {model.code}")
            response = make_response(to_csv(model, result["items"], result["fields"]), HTTPStatus.OK)
            response.headers["Content-Type"] = "text/csv; charset=utf-8"
            response.headers["Content-Disposition"] = f"attachment; filename={model.code}-data.csv"
            return response
        return make_response(jsonify({"data": result["items"]}), HTTPStatus.OK)

    def post(self, entity):
        model = get_entity(entity)
        result = model_functions.insert(model, request.get_payload(), request_context())
        return item_response(result, HTTPStatus.CREATED)

    def delete(self, entity):
        model = get_entity(entity)
        result = model_functions.delete_by_query(model, request.query_params, request_context())
        return make_response(jsonify(result), HTTPStatus.OK)


class EntityCountAPI(Resource):
    def get(self, entity):
        model = get_entity(entity)
        result = model_functions.count(model, request.query_params, request_context())
        return make_response(jsonify(result), HTTPStatus.OK)


class EntityBatchAPI(Resource):
    def delete(self, entity):
        model = get_entity(entity)
        ids = request.get_payload().get("id")
        result = model_functions.delete_batch(model, ids, request_context())
        return make_response(jsonify(result), HTTPStatus.OK)


class EntityInstanceAPI(Resource):
    def get(self, entity, object_id):
        model = get_entity(entity)
        item = model_functions.find_by_id(model, object_id, request.query_params, request_context())
        return make_response(jsonify(item), HTTPStatus.OK)

    def put(self, entity, object_id):
        model = get_entity(entity)
        result = model_functions.update_by_id(model, object_id, request.get_payload(), request_context())
        return item_response(result)

    def delete(self, entity, object_id):
        model = get_entity(entity)
        result = model_functions.delete_by_id(model, object_id, request_context())
        return make_response(jsonify(result), HTTPStatus.OK)


class EntityBinaryAPI(Resource):
    def get(self, entity, object_id, attribute, filename):
        """
        Download the data of a binary attribute, ?attachment adds a Content-Disposition header
        """
        model = get_entity(entity)
        item = model_functions.find_binary(model, object_id, attribute, request_context())
        response = make_response(item["binaryData"], HTTPStatus.OK)
        response.headers["Content-Type"] = item["mimetype"] or "application/octet-stream"
        if "attachment" in request.args:
            response.headers["Content-Disposition"] = f"attachment; filename={item['filename']}"
        return response


class EntityOwnerAPI(Resource):
    def put(self, entity, object_id):
        model = get_entity(entity)
        owner = request.get_payload().get("owner")
        result = model_functions.change_owner(model, object_id, owner, request_context())
        return make_response(jsonify(result), HTTPStatus.OK)


class EntityGroupAPI(Resource):
    def put(self, entity, object_id, group):
        model = get_entity(entity)
        perms = request.get_payload().get("perms")
        result = model_functions.change_group(model, object_id, group, perms, request_context())
        return make_response(jsonify(result), HTTPStatus.OK)


def api_decorator(cls):
    """Decorator for the API views: add the generic exception handling to the http methods
    :param cls: the Resource class that will be decorated
    :return: decorated class
    """
    for method_name in ["get", "post", "put", "delete"]:
        method = getattr(cls, method_name, None)
        if not method or getattr(method, "http_method_decorated", False):
            continue
        setattr(cls, method_name, http_method_decorator(method))
    return cls


def http_method_decorator(fun: Callable) -> Callable:
    """Decorator for the supported HTTP methods (get, post, put, delete)
    - commit the database
    - convert all exceptions to a JSON serializable error response

    :param fun:
    :return: wrapped fun
    """

    @wraps(fun)
    def method_wrapper(*args: Any, **kwargs: Any):
        exception = None
        status_code = HTTPStatus.INTERNAL_SERVER_ERROR.value
        message = ""
        kind = "InternalError"
        try:
            result = fun(*args, **kwargs)
            dynarest.DB.session.commit()
            return result

        except DynarestError as exc:
            # this also catches dynarest.errors.NotFoundError
            dynarest.log.debug(f"{exc.kind}: {exc.message}")
            exception = exc
            kind = exc.kind

        except werkzeug.exceptions.HTTPException as exc:
            status_code = exc.code
            message = exc.description
            kind = exc.name.replace(" ", "")
            dynarest.log.error(message)

        except Exception as exc:
            dynarest.log.exception(exc)
            message = str(exc) if is_debug() else "Logging Disabled"

        status_code = getattr(exception, "status_code", status_code)
        title = getattr(exception, "message", message)

        dynarest.DB.session.rollback()
        errors = dict(title=title, detail=title, code=str(status_code), kind=kind)
        abort(status_code, errors=[errors])

    method_wrapper.http_method_decorated = True
    return method_wrapper
