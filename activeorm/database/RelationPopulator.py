import logging
from typing import Any, Callable, Union

logger = logging.getLogger("orm.relations")


def model_value(model, name: str):
    if isinstance(model, dict):
        return model.get(name)
    return model.get_attribute(name) if model.has_property(name) else None


def model_keys(model, properties: list[str]) -> list:
    """
    Bucket keys of a model for the given link columns. Values are compared as
    strings; a list-valued column yields one key per element and a row with a
    null in any column yields none.
    """
    values = [model_value(model, name) for name in properties]
    if not values or any(value is None for value in values):
        return []
    if len(values) == 1:
        value = values[0]
        if isinstance(value, (list, tuple)):
            return [str(item) for item in value if item is not None]
        return [str(value)]
    return [tuple(str(value) for value in values)]


def index_value(model, index_by: Union[str, Callable]):
    return index_by(model) if callable(index_by) else model_value(model, index_by)


def index_models(models: list, index_by: Union[str, Callable]) -> dict:
    return {index_value(model, index_by): model for model in models}


def qualified_link_columns(query) -> list[str]:
    columns = list(query.get_link().keys())
    if query.joins or query.join_with_specs:
        alias = query.get_alias()
        return [f"{alias}.{column}" for column in columns]
    return columns


def filter_by_models(query, models: list):
    """Restrict query to rows linked to models; no linked values short-circuits to an empty result."""
    columns = qualified_link_columns(query)
    parent_columns = list(query.get_link().values())

    if len(columns) == 1:
        values = []
        for model in models:
            value = model_value(model, parent_columns[0])
            if isinstance(value, (list, tuple)):
                values.extend(item for item in value if item is not None)
            elif value is not None:
                values.append(value)
        values = list(dict.fromkeys(values))
        if not values:
            query.emulate_execution()
            query.and_where("1 = 0")
            return query
        return query.where_in(columns[0], values)

    rows = []
    for model in models:
        row = tuple(model_value(model, column) for column in parent_columns)
        if None not in row:
            rows.append(row)
    rows = list(dict.fromkeys(rows))
    if not rows:
        query.emulate_execution()
        query.and_where("1 = 0")
        return query
    return query.where_in(columns, rows)


def find_junction_rows(via_query, models: list) -> list[dict]:
    filter_by_models(via_query, models)
    return list(via_query.as_array().all())


def set_relation(model, name: str, value):
    if isinstance(model, dict):
        model[name] = value
    else:
        model.populate_relation(name, value)


class RelationPopulator:
    """
    Loads one relation for a batch of primary models with a single query
    per hop and distributes the result into each primary model.
    """

    def __init__(self, query, name: str, primary_models: list):
        self.query = query
        self.name = name
        self.primary_models = primary_models

    def run(self) -> list:
        models, _ = self._populate(self.query, self.name, self.primary_models)
        return models

    def _populate(self, query, name: str, primary_models: list) -> tuple[list, dict]:
        via = query.get_via()
        via_models = None
        via_query = None
        via_map: dict = {}

        if via is not None and not isinstance(via, tuple):
            via_query = via
            via_models = find_junction_rows(via_query, primary_models)
            filter_by_models(query, via_models)
        elif via is not None:
            via_name, via_query = via[0], via[1]
            if via_query.is_as_array() is None:
                via_query.as_array(query.is_as_array())
            via_query.primary_model(None)
            via_models, via_map = self._populate(via_query, via_name, primary_models)
            filter_by_models(query, via_models)
        else:
            filter_by_models(query, primary_models)

        logger.debug("eager load %s for %d %s", name, len(primary_models), query.model_class.__name__)

        if not query.is_multiple() and len(primary_models) == 1:
            model = query.one()
            models = [] if model is None else [model]
            self._populate_inverse(query, models, primary_models)
            set_relation(primary_models[0], name, model)
            return models, {}

        index_by = query.get_index_by()
        query.index_by(None)
        models = list(query.all())
        self._populate_inverse(query, models, primary_models)

        buckets, via_map = self._build_buckets(query, models, via_models, via_query, via_map)

        query.index_by(index_by)
        if index_by is not None and query.is_multiple():
            buckets = {key: index_models(bucket, index_by) for key, bucket in buckets.items()}

        if via_query is not None:
            deepest = via_query
            while deepest.get_via() is not None:
                deeper = deepest.get_via()
                deepest = deeper[1] if isinstance(deeper, tuple) else deeper
            link = deepest.get_link()
        else:
            link = query.get_link()

        self._populate_from_buckets(query, primary_models, buckets, name, link)
        return models, via_map

    # ----------------------------------------------------------------------
    # Buckets
    # ----------------------------------------------------------------------

    def _build_buckets(self, query, models: list, via_models=None, via_query=None,
                       via_map: dict = None) -> tuple[dict, dict]:
        mapping = None
        returned_map: dict = {}

        if via_models is not None:
            mapping = {}
            link_values = list(query.get_link().values())
            via_link_keys = list(via_query.get_link().keys())
            for via_model in via_models:
                primary_keys = model_keys(via_model, via_link_keys)
                for key in model_keys(via_model, link_values):
                    targets = mapping.setdefault(key, {})
                    for primary_key in primary_keys:
                        targets[primary_key] = True

            returned_map = mapping
            deeper = via_query.get_via()
            while deeper is not None:
                deeper_query = deeper[1] if isinstance(deeper, tuple) else deeper
                mapping = self._map_via(mapping, via_map or {})
                deeper = deeper_query.get_via()

        buckets: dict[Any, list] = {}
        link_keys = list(query.get_link().keys())

        for model in models:
            keys = model_keys(model, link_keys)
            if mapping is not None:
                targets: dict = {}
                for key in keys:
                    targets.update(mapping.get(key, {}))
                keys = list(targets)
            for key in keys:
                buckets.setdefault(key, []).append(model)

        if not query.is_multiple():
            return {key: bucket[0] for key, bucket in buckets.items()}, returned_map
        return buckets, returned_map

    @staticmethod
    def _map_via(mapping: dict, via_map: dict) -> dict:
        result = {}
        for key, link_keys in mapping.items():
            merged: dict = {}
            for link_key in link_keys:
                merged.update(via_map.get(link_key, {}))
            result[key] = merged
        return result

    def _populate_from_buckets(self, query, primary_models: list, buckets: dict, name: str, link: dict):
        multiple = query.is_multiple()
        indexed = query.get_index_by() is not None
        link_values = list(link.values())

        for model in primary_models:
            keys = model_keys(model, link_values)
            found = [buckets[key] for key in keys if key in buckets]

            if not multiple:
                value = found[0] if len(keys) == 1 and found else None
            elif indexed:
                value = {}
                for bucket in found:
                    value.update(bucket)
            else:
                value = []
                for bucket in found:
                    value.extend(bucket)

            set_relation(model, name, value)

    def _populate_inverse(self, query, models: list, primary_models: list):
        inverse_name = query.get_inverse_of()
        if inverse_name is None or not models:
            return

        first = models[0]
        source = query.model_class(db=query.db) if isinstance(first, dict) else first
        relation = source.relation_query(inverse_name)

        buckets, _ = self._build_buckets(relation, primary_models)
        if relation.get_index_by() is not None and relation.is_multiple():
            buckets = {key: index_models(bucket, relation.get_index_by()) for key, bucket in buckets.items()}

        self._populate_from_buckets(relation, models, buckets, inverse_name, relation.get_link())
