def enum_value(v: object) -> object:
    """Enum members serialise as their value."""
    if hasattr(v, "value"):
        return v.value
    return v
