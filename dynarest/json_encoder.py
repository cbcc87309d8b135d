# dynarest to json encoding

import datetime
import decimal
from uuid import UUID

from flask.json.provider import DefaultJSONProvider

import dynarest
from .util import isoformat


class _DynarestJSONEncoder:
    """
    JSON encoding for the values of the result documents
    """

    # pylint: disable=arguments-differ,method-hidden
    def default(self, obj, **kwargs):
        """
        override the default json encoding
        :param obj: object to be encoded
        :return: encoded/serialized object
        """
        if isinstance(obj, datetime.datetime):
            return isoformat(obj)
        if isinstance(obj, (datetime.date, datetime.time)):
            return obj.isoformat()
        if isinstance(obj, datetime.timedelta):
            return str(obj)
        if isinstance(obj, set):
            return list(obj)
        if isinstance(obj, UUID):  # pragma: no cover
            return str(obj)
        if isinstance(obj, decimal.Decimal):  # pragma: no cover
            return float(obj)
        if isinstance(obj, bytes):
            if obj == b"":
                return ""
            dynarest.log.debug("DynarestJSONEncoder: serializing bytes obj")
            return obj.hex()
        return DefaultJSONProvider.default(obj)


class DynarestJSONProvider(_DynarestJSONEncoder, DefaultJSONProvider):
    """
    Flask JSON encoding
    """

    sort_keys = False
