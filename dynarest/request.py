from typing import Any, Dict, List

from flask import Request

from .errors import ValidationError


# pylint: disable=too-many-ancestors
class DynarestRequest(Request):
    """
    Normalized access to the request arguments:
    - query_params: query string as {name: [values]}
    - get_payload(): JSON body or form fields and uploaded files
    """

    @property
    def query_params(self) -> Dict[str, List[str]]:
        return {key: self.args.getlist(key) for key in self.args.keys()}

    def get_payload(self) -> Dict[str, Any]:
        """
        :return: request payload
        """
        if self.is_json:
            result = self.get_json(silent=True)
            if result is None:
                if self.get_data():
                    raise ValidationError("Invalid JSON Payload")
                return {}
            if not isinstance(result, dict):
                raise ValidationError(f"Invalid JSON Payload : {result}")
            return result

        payload: Dict[str, Any] = {}
        for key in self.form.keys():
            values = self.form.getlist(key)
            payload[key] = values[0] if len(values) == 1 else values
        payload.update(self.files.to_dict())
        return payload
