from typing import Any, Callable

from activeorm.database.Events import BeforeInsert, BeforeUpdate, BeforeUpsert, AfterPopulate, Event


class AttributeHandlerProvider:
    """
    Base for handlers declared in a model's registration table.

    Declared in __handlers__ it works on the property names given to it;
    declared in __property_handlers__ it is bound to that one property.
    """

    def __init__(self, *property_names: str):
        self.property_names = list(property_names)

    def get_event_handlers(self) -> dict[type, Callable[[Event], Any]]:
        raise NotImplementedError(f"{self.__class__.__name__} must implement get_event_handlers()")

    def get_property_names(self) -> list[str]:
        return self.property_names

    def set_property_names(self, property_names: list[str]):
        self.property_names = list(property_names)

    def _resolve(self, value, event: Event):
        return value(event) if callable(value) else value


class DefaultValue(AttributeHandlerProvider):
    """Fill empty properties after a record is populated from a row."""

    def __init__(self, value: Any = None, *property_names: str):
        super().__init__(*property_names)
        self.value = value

    def get_event_handlers(self):
        return {AfterPopulate: self.after_populate}

    def after_populate(self, event: AfterPopulate):
        model = event.model
        value = self._resolve(self.value, event)
        for name in self.property_names:
            if model.has_property(name) and model.get_attribute(name) is None:
                model.set_attribute(name, value)


class DefaultValueOnInsert(AttributeHandlerProvider):
    def __init__(self, value: Any = None, *property_names: str):
        super().__init__(*property_names)
        self.value = value

    def get_event_handlers(self):
        return {
            BeforeInsert: self.before_insert,
            BeforeUpsert: self.before_upsert,
        }

    def before_insert(self, event: BeforeInsert):
        model = event.model
        value = self._resolve(self.value, event)
        for name in self.property_names:
            if model.has_property(name) and model.get_attribute(name) is None:
                model.set_attribute(name, value)

    def before_upsert(self, event: BeforeUpsert):
        model = event.model
        value = self._resolve(self.value, event)
        for name in self.property_names:
            if not model.has_property(name) or model.get_attribute(name) is not None:
                continue
            if event.insert_properties is None:
                model.set_attribute(name, value)
                continue
            if isinstance(event.insert_properties, list):
                event.insert_properties = model.property_values_for(event.insert_properties)
            event.insert_properties.setdefault(name, value)


class SetValueOnUpdate(AttributeHandlerProvider):
    def __init__(self, value: Any = None, *property_names: str):
        super().__init__(*property_names)
        self.value = value

    def get_event_handlers(self):
        return {
            BeforeUpdate: self.before_update,
            BeforeUpsert: self.before_upsert,
        }

    def before_update(self, event: BeforeUpdate):
        model = event.model
        value = self._resolve(self.value, event)
        for name in self.property_names:
            if model.has_property(name):
                model.set_attribute(name, value)
                # a restricted update still writes the stamped property
                if isinstance(event.properties, list) and name not in event.properties:
                    event.properties.append(name)

    def before_upsert(self, event: BeforeUpsert):
        model = event.model
        value = self._resolve(self.value, event)
        update_properties = None

        for name in self.property_names:
            if not model.has_property(name):
                continue
            if update_properties is None:
                if event.update_properties is True:
                    primary_key = set(model.primary_key())
                    update_properties = {
                        key: val for key, val in model.property_values_for(event.insert_properties).items()
                        if key not in primary_key
                    }
                elif event.update_properties is False:
                    update_properties = {}
                else:
                    update_properties = model.property_values_for(event.update_properties)
            update_properties[name] = value

        if update_properties:
            event.update_properties = update_properties
