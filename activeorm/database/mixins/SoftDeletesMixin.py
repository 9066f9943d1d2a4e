from typing import Any

from activeorm.database.Events import AfterCreateQuery, BeforeDelete
from activeorm.database.mixins.AttributeHandlers import AttributeHandlerProvider
from activeorm.database.mixins.TimestampMixins import now


class SoftDelete(AttributeHandlerProvider):
    """
    Turns delete() into an UPDATE of the marker column(s) and hides marked
    rows from every query created through Model.query().
    """

    def __init__(self, value: Any = None, *property_names: str):
        super().__init__(*(property_names or ("deleted_at",)))
        self.value = value if value is not None else now

    def get_event_handlers(self):
        return {
            AfterCreateQuery: self.after_create_query,
            BeforeDelete: self.before_delete,
        }

    def after_create_query(self, event: AfterCreateQuery):
        model = event.model
        table_name = model.table_name()
        for name in self.property_names:
            if model.has_property(name):
                event.query.and_where(f"{table_name}.{name}", None)

    def before_delete(self, event: BeforeDelete):
        model = event.model
        value = self._resolve(self.value, event)

        values = {}
        for name in self.property_names:
            if model.has_property(name) and model.get_attribute(name) is None:
                values[name] = value

        if values:
            event.return_value(model.update(values))

        event.prevent_default()
