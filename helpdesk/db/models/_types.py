from sqlalchemy import Enum


def enum_type(enum_cls, *, name: str) -> Enum:
    """Store str-enums by value as portable VARCHAR columns."""
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        length=32,
        values_callable=lambda members: [member.value for member in members],
    )
