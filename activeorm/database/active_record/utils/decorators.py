def on(*event_types):
    """Register the decorated method as a listener for the given event types."""
    def decorator(fn):
        fn.__event_types__ = event_types
        return fn
    return decorator


def relation(fn):
    """Mark a method as a relation accessor; its name is the relation name."""
    fn.__is_relation__ = True
    return fn
