from types import SimpleNamespace
from typing import Any, Dict, Optional
from marshmallow import INCLUDE, EXCLUDE, Schema, post_load

EXCLUDE = EXCLUDE
JSON = Dict[str, Any]
MAX_REPR_LEN = 50


class BaseModel(SimpleNamespace):
    """BaseModel that all spec models inherit from.

    Args:
        **kwargs: All passed parameters as converted to instance attributes.
    """

    def __init__(self, **kwargs: Any) -> None:
        self.__dict__.update(kwargs)

    def __repr__(self) -> str:
        repr_ = super().__repr__()
        if len(repr_) > MAX_REPR_LEN:
            return repr_[:MAX_REPR_LEN] + " ...)"
        else:
            return repr_

    def as_dict(self) -> Dict[str, Any]:
        result = {}
        for key, value in self.__dict__.items():
            if isinstance(value, BaseModel):
                result[key] = value.as_dict()
            elif isinstance(value, list):
                result[key] = [
                    item.as_dict() if isinstance(item, BaseModel) else item
                    for item in value
                ]
            else:
                result[key] = value
        return result


class UnknownModel(BaseModel):
    """A convenience class that inherits from `BaseModel`."""

    def keys(self):
        return self.__dict__.keys()

    def values(self):
        return self.__dict__.values()

    def items(self):
        return self.__dict__.items()


class BaseSchema(Schema):
    """The default schema for all models."""

    __model__: Any = UnknownModel
    """Determine the object that is created when the load method is called."""

    class Meta:
        unknown = INCLUDE
        ordered = True

    @post_load
    def make_object(self, data: JSON, **kwargs: Any) -> "__model__":
        """Build model for the given `__model__` class attribute.
        Args:
            data: The JSON diction to use to build the model.
            **kwargs: Unused but required to match signature of `Schema.make_object`
        Returns:
            An instance of the `__model__` class.
        """
        return self.__model__(**data)


def optional(model: Optional[BaseModel], attr: str, default: Any = None) -> Any:
    """Read ``attr`` from a possibly missing model."""
    if model is None:
        return default
    value = getattr(model, attr, None)
    return default if value is None else value
