import copy
import logging
import threading
from typing import Any, Callable, Optional, Type

logger = logging.getLogger("orm.events")


class Event:
    """
    Lifecycle notification for a model.

    Listeners may call prevent_default() to skip the wrapped operation and
    return_value() to choose what the caller gets back instead.
    """

    def __init__(self, model):
        self.model = model
        self._propagation_stopped = False
        self._default_prevented = False
        self._return_value = None

    def stop_propagation(self):
        self._propagation_stopped = True

    def is_propagation_stopped(self) -> bool:
        return self._propagation_stopped

    def prevent_default(self):
        self._default_prevented = True

    def is_default_prevented(self) -> bool:
        return self._default_prevented

    def return_value(self, value: Any):
        self._return_value = value

    def get_return_value(self) -> Any:
        return self._return_value


# ----------------------------------------------------------------------
# Lifecycle events
# ----------------------------------------------------------------------

class BeforeInsert(Event):
    def __init__(self, model, properties=None):
        super().__init__(model)
        self.properties = properties


class AfterInsert(Event):
    def __init__(self, model, result: bool):
        super().__init__(model)
        self.result = result


class BeforeUpdate(Event):
    def __init__(self, model, properties=None):
        super().__init__(model)
        self.properties = properties


class AfterUpdate(Event):
    def __init__(self, model, result: int):
        super().__init__(model)
        self.result = result


class BeforeSave(Event):
    def __init__(self, model, properties=None):
        super().__init__(model)
        self.properties = properties


class AfterSave(Event):
    def __init__(self, model, result: bool):
        super().__init__(model)
        self.result = result


class BeforeDelete(Event):
    pass


class AfterDelete(Event):
    def __init__(self, model, result: int):
        super().__init__(model)
        self.result = result


class BeforeUpsert(Event):
    def __init__(self, model, insert_properties=None, update_properties=True):
        super().__init__(model)
        self.insert_properties = insert_properties
        self.update_properties = update_properties


class AfterUpsert(Event):
    def __init__(self, model, result: bool):
        super().__init__(model)
        self.result = result


class BeforePopulate(Event):
    def __init__(self, model, data: dict):
        super().__init__(model)
        self.data = data


class AfterPopulate(Event):
    def __init__(self, model, data: dict):
        super().__init__(model)
        self.data = data


class BeforeCreateQuery(Event):
    pass


class AfterCreateQuery(Event):
    def __init__(self, model, query):
        super().__init__(model)
        self.query = query


# ----------------------------------------------------------------------
# Dispatching
# ----------------------------------------------------------------------

class EventDispatcher:
    def __init__(self):
        self._listeners: list[tuple[Type[Event], Callable[[Event], Any]]] = []

    def add_listener(self, listener: Callable[[Event], Any], *event_types: Type[Event]):
        for event_type in event_types:
            self._listeners.append((event_type, listener))
        return self

    def listeners_for(self, event: Event) -> list[Callable[[Event], Any]]:
        return [listener for event_type, listener in self._listeners if isinstance(event, event_type)]

    def dispatch(self, event: Event) -> Event:
        """
        Call every listener registered for the event, in registration order,
        until one stops propagation. Listener exceptions propagate.
        """
        for listener in self.listeners_for(event):
            if event.is_propagation_stopped():
                break
            logger.debug("%s -> %s for %s", type(event).__name__, listener, type(event.model).__name__)
            listener(event)
        return event


class EventDispatcherProvider:
    """
    Per-model-class dispatcher cache, filled on first use from the model's
    registration table:

        __handlers__            class-level handler providers, in order
        __property_handlers__   {property: [providers]} in property order
        explicit on() calls     recorded in __listeners__
    """
    _dispatchers: dict[type, EventDispatcher] = {}
    _lock = threading.Lock()

    @classmethod
    def get(cls, target_class: type) -> EventDispatcher:
        dispatcher = cls._dispatchers.get(target_class)
        if dispatcher is not None:
            return dispatcher

        with cls._lock:
            if target_class not in cls._dispatchers:
                cls._dispatchers[target_class] = cls._build(target_class)
            return cls._dispatchers[target_class]

    @classmethod
    def set(cls, target_class: type, dispatcher: EventDispatcher):
        with cls._lock:
            cls._dispatchers[target_class] = dispatcher

    @classmethod
    def reset(cls, target_class: Optional[type] = None):
        with cls._lock:
            if target_class is None:
                cls._dispatchers.clear()
            else:
                cls._dispatchers.pop(target_class, None)

    @classmethod
    def _build(cls, target_class: type) -> EventDispatcher:
        dispatcher = EventDispatcher()

        for provider in getattr(target_class, "__handlers__", ()):
            for event_type, handler in provider.get_event_handlers().items():
                dispatcher.add_listener(handler, event_type)

        for property_name, providers in getattr(target_class, "__property_handlers__", {}).items():
            for provider in providers:
                provider = copy.copy(provider)
                provider.set_property_names([property_name])
                for event_type, handler in provider.get_event_handlers().items():
                    dispatcher.add_listener(handler, event_type)

        for klass in reversed(target_class.__mro__):
            for event_type, listener in vars(klass).get("__listeners__", ()):
                dispatcher.add_listener(listener, event_type)

        return dispatcher
