import threading
from unittest import TestCase, mock

from activeorm.database.ActiveRecord import ActiveRecord
from activeorm.database.Events import (
    AfterCreateQuery,
    AfterInsert,
    BeforeCreateQuery,
    BeforeDelete,
    BeforeInsert,
    BeforeUpdate,
    Event,
    EventDispatcher,
    EventDispatcherProvider,
)
from activeorm.database.active_record.utils.decorators import on
from activeorm.database.fields.Fields import CharField, IntegerField
from activeorm.database.mixins.AttributeHandlers import AttributeHandlerProvider, DefaultValue

from orm_fixtures import Customer, make_database


class Recorder(AttributeHandlerProvider):
    def __init__(self, label, calls, *property_names):
        super().__init__(*property_names)
        self.label = label
        self.calls = calls

    def get_event_handlers(self):
        return {BeforeInsert: self.before_insert}

    def before_insert(self, event):
        self.calls.append((self.label, list(self.property_names)))


CALLS = []


class AuditedCustomer(ActiveRecord):
    __table__ = "customer"
    __handlers__ = (Recorder("class", CALLS),)
    __property_handlers__ = {"name": [Recorder("property", CALLS)]}

    id = IntegerField(primary_key=True)
    name = CharField()

    @on(BeforeInsert)
    def remember(self, event):
        CALLS.append(("method", [self.__class__.__name__]))


SHARED = Recorder("shared", CALLS)


class DoublyAuditedCustomer(ActiveRecord):
    __table__ = "customer"
    __property_handlers__ = {"name": [SHARED], "email": [SHARED]}

    id = IntegerField(primary_key=True)
    name = CharField()
    email = CharField()


class TestEventDispatcher(TestCase):
    def test_listeners_run_in_registration_order(self):
        calls = []
        dispatcher = EventDispatcher()
        dispatcher.add_listener(lambda event: calls.append("first"), BeforeInsert)
        dispatcher.add_listener(lambda event: calls.append("second"), BeforeInsert)

        dispatcher.dispatch(BeforeInsert(None))

        self.assertEqual(calls, ["first", "second"])

    def test_listener_matches_event_subclasses(self):
        listener = mock.Mock()
        dispatcher = EventDispatcher().add_listener(listener, Event)

        event = dispatcher.dispatch(BeforeDelete(None))

        listener.assert_called_once_with(event)

    def test_stop_propagation_skips_remaining_listeners(self):
        late = mock.Mock()
        dispatcher = EventDispatcher()
        dispatcher.add_listener(lambda event: event.stop_propagation(), BeforeUpdate)
        dispatcher.add_listener(late, BeforeUpdate)

        event = dispatcher.dispatch(BeforeUpdate(None))

        self.assertTrue(event.is_propagation_stopped())
        late.assert_not_called()

    def test_listener_errors_propagate(self):
        dispatcher = EventDispatcher()
        dispatcher.add_listener(mock.Mock(side_effect=RuntimeError("boom")), BeforeInsert)

        with self.assertRaises(RuntimeError):
            dispatcher.dispatch(BeforeInsert(None))

    def test_prevent_default_and_return_value(self):
        event = BeforeDelete(None)
        self.assertFalse(event.is_default_prevented())

        event.prevent_default()
        event.return_value(42)

        self.assertTrue(event.is_default_prevented())
        self.assertEqual(event.get_return_value(), 42)


class TestEventDispatcherProvider(TestCase):
    def setUp(self):
        CALLS.clear()

    def tearDown(self):
        EventDispatcherProvider.reset()

    def test_dispatcher_is_cached_per_class(self):
        first = EventDispatcherProvider.get(Customer)
        self.assertIs(EventDispatcherProvider.get(Customer), first)
        self.assertIsNot(EventDispatcherProvider.get(AuditedCustomer), first)

    def test_reset_rebuilds(self):
        first = EventDispatcherProvider.get(Customer)
        EventDispatcherProvider.reset(Customer)
        self.assertIsNot(EventDispatcherProvider.get(Customer), first)

    def test_set_replaces_dispatcher(self):
        dispatcher = EventDispatcher()
        EventDispatcherProvider.set(Customer, dispatcher)
        self.assertIs(EventDispatcherProvider.get(Customer), dispatcher)

    def test_registration_table_order(self):
        EventDispatcherProvider.get(AuditedCustomer).dispatch(BeforeInsert(AuditedCustomer()))

        self.assertEqual(CALLS, [
            ("class", []),
            ("property", ["name"]),
            ("method", ["AuditedCustomer"]),
        ])

    def test_provider_shared_between_properties_keeps_each_name(self):
        EventDispatcherProvider.get(DoublyAuditedCustomer).dispatch(BeforeInsert(DoublyAuditedCustomer()))

        self.assertEqual(CALLS, [("shared", ["name"]), ("shared", ["email"])])

    def test_concurrent_first_use_builds_one_dispatcher(self):
        EventDispatcherProvider.reset()
        results = []
        barrier = threading.Barrier(8)

        def fetch():
            barrier.wait()
            results.append(EventDispatcherProvider.get(AuditedCustomer))

        threads = [threading.Thread(target=fetch) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(len(results), 8)
        self.assertEqual(len({id(dispatcher) for dispatcher in results}), 1)

    def test_explicit_listener_registration(self):
        class Watched(Customer):
            pass

        listener = mock.Mock()
        Watched.on(BeforeInsert, listener)

        event = EventDispatcherProvider.get(Watched).dispatch(BeforeInsert(Watched()))

        listener.assert_called_once_with(event)
        self.assertEqual(EventDispatcherProvider.get(Customer).listeners_for(event), [])


class TestLifecycleEvents(TestCase):
    def setUp(self):
        self.db = make_database()

    def tearDown(self):
        EventDispatcherProvider.reset()

    def test_failing_listener_rolls_back_insert(self):
        class FailingCustomer(Customer):
            @on(AfterInsert)
            def explode(self, event):
                raise RuntimeError("boom")

        customer = FailingCustomer(db=self.db, email="x@example.com", name="x")

        with self.assertRaises(RuntimeError):
            customer.insert()

        self.assertEqual(self.db.query("SELECT COUNT(*) AS n FROM customer")[0]["n"], 3)
        self.assertFalse(self.db.in_transaction)

    def test_after_create_query_sees_the_new_query(self):
        seen = []

        class Scoped(Customer):
            pass

        Scoped.on(AfterCreateQuery, lambda event: seen.append(event.query))
        query = Scoped.query(self.db)

        self.assertEqual(len(seen), 1)
        self.assertIs(seen[0], query)

    def test_prevented_create_query_returns_listener_value(self):
        class Blocked(Customer):
            @on(BeforeCreateQuery)
            def block(self, event):
                event.prevent_default()
                event.return_value("blocked")

        self.assertEqual(Blocked.query(self.db), "blocked")

    def test_default_value_fills_empty_columns_after_populate(self):
        class DefaultedCustomer(Customer):
            __property_handlers__ = {"profile_id": [DefaultValue(0)]}

        customer = DefaultedCustomer.find_one(self.db, 2)

        self.assertEqual(customer.get_attribute("profile_id"), 0)
        self.assertEqual(DefaultedCustomer.find_one(self.db, 1).get_attribute("profile_id"), 1)
