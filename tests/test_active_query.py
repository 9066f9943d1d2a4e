from decimal import Decimal
from unittest import TestCase

from activeorm.database.ActiveQuery import PaginationResult
from activeorm.database.Exceptions import InvalidCallError, NoResultsFound

from orm_fixtures import Customer, Order, OrderItem, make_database

class TestQueryConfiguration(TestCase):
    def setUp(self):
        self.db = make_database()

    def test_with_appends_names_and_replaces_callbacks(self):
        first, second = (lambda q: None), (lambda q: None)
        query = Customer.query(self.db).with_("orders", "profile").with_({"orders": first}).with_({"orders": second})

        self.assertEqual(query.with_relations, {0: "orders", 1: "profile", "orders": second})

    def test_with_accepts_a_list(self):
        query = Customer.query(self.db).with_(["orders", "profile"])
        self.assertEqual(query.with_relations, {0: "orders", 1: "profile"})

    def test_with_dict_integer_keys_are_appended(self):
        callback = lambda q: None
        query = Customer.query(self.db).with_("orders").with_({0: "profile", "orders": callback})

        self.assertEqual(query.with_relations, {0: "orders", 1: "profile", "orders": callback})

    def test_clone_keeps_relation_state_apart(self):
        original = Customer.query(self.db).with_("orders")
        copy = original.clone().with_("profile").join_with("orders")

        self.assertEqual(original.with_relations, {0: "orders"})
        self.assertEqual(original.join_with_specs, [])
        self.assertEqual(len(copy.join_with_specs), 1)

    def test_from_with_alias(self):
        query = Customer.query(self.db).from_("customer c")

        self.assertEqual(query.get_alias(), "c")
        self.assertEqual(query.get()[0], 'SELECT * FROM "customer" "c"')

    def test_alias_defaults_to_table(self):
        self.assertEqual(Order.query(self.db).get_alias(), "order")


class TestQueryExecution(TestCase):
    def setUp(self):
        self.db = make_database()
        self.db.forget()

    def test_all_returns_models(self):
        customers = Customer.query(self.db).order_by("id").all()

        self.assertEqual(customers.pluck("name"), ["user1", "user2", "user3"])
        self.assertFalse(customers.first().is_new())
        self.assertEqual(customers.first().new_values(), {})

    def test_collection_helpers(self):
        customers = Customer.query(self.db).order_by("id").all()

        self.assertEqual(customers.where(lambda c: c.get_attribute("status") == 1).pluck("id"), [1, 2])
        self.assertEqual(customers.take(2).pluck("id"), [1, 2])
        self.assertEqual(customers.last().get_attribute("id"), 3)
        self.assertEqual(sorted(customers.index_by("email")), ["user1@example.com", "user2@example.com", "user3@example.com"])
        self.assertEqual(customers.to_list_dict()[0]["email"], "user1@example.com")
        self.assertIsNone(customers.where(lambda c: False).first())

    def test_one_limits_the_statement(self):
        customer = Customer.query(self.db).and_where("status", 1).order_by("id").one()

        self.assertEqual(customer.get_attribute("id"), 1)
        self.assertTrue(self.db.selects()[0].endswith("LIMIT 1"))

    def test_one_with_alias(self):
        customer = Customer.query(self.db).from_("customer c").and_where("c.id", 2).one()

        self.assertEqual(customer.get_attribute("name"), "user2")
        self.assertEqual(self.db.selects()[0], 'SELECT * FROM "customer" "c" WHERE "c"."id" = ? LIMIT 1')

    def test_one_or_fail(self):
        with self.assertRaises(NoResultsFound):
            Customer.query(self.db).and_where("id", 99).one_or_fail()

    def test_count_exists_scalar_column(self):
        query = Customer.query(self.db).and_where("status", 1)

        self.assertEqual(query.count(), 2)
        self.assertTrue(query.exists())
        self.assertFalse(Customer.query(self.db).and_where("id", 99).exists())
        self.assertEqual(query.clone().select("name").order_by("id", "desc").scalar(), "user2")
        self.assertEqual(query.clone().select("email").order_by("id").column(), ["user1@example.com", "user2@example.com"])

    def test_count_ignores_limit_and_order(self):
        self.assertEqual(Order.query(self.db).order_by("id").limit(1).count(), 3)

    def test_emulated_execution_sends_nothing(self):
        query = Customer.query(self.db).emulate_execution()

        self.assertEqual(query.all(), [])
        self.assertIsNone(query.one())
        self.assertEqual(query.count(), 0)
        self.assertFalse(query.exists())
        self.assertIsNone(query.scalar())
        self.assertEqual(query.column(), [])
        self.assertEqual(self.db.statements, [])

    def test_index_by_column(self):
        customers = Customer.query(self.db).index_by("email").all()

        self.assertEqual(sorted(customers), ["user1@example.com", "user2@example.com", "user3@example.com"])
        self.assertEqual(customers["user2@example.com"].get_attribute("id"), 2)

    def test_index_by_callable(self):
        orders = Order.query(self.db).index_by(lambda order: order.get_attribute("id") * 10).all()

        self.assertEqual(sorted(orders), [10, 20, 30])

    def test_array_mode_typecasts_rows(self):
        rows = Order.query(self.db).and_where("id", 1).as_array().all()

        self.assertEqual(rows, [{"id": 1, "customer_id": 1, "created_at": 1325282384, "total": Decimal("110")}])

    def test_find_by_primary_key(self):
        self.assertEqual(Customer.query(self.db).find_by_pk(3).get_attribute("name"), "user3")
        self.assertEqual(OrderItem.query(self.db).find_by_pk([2, 5]).get_attribute("quantity"), 1)
        self.assertEqual(OrderItem.query(self.db).find_by_pk({"order_id": 1, "item_id": 2}).get_attribute("quantity"), 2)

    def test_find_one_and_find_all(self):
        self.assertEqual(OrderItem.find_one(self.db, (2, 4)).get_attribute("subtotal"), Decimal("10"))
        self.assertEqual(len(Order.find_all(self.db, {"customer_id": 2})), 2)
        self.assertEqual(len(Order.find_all(self.db)), 3)

        with self.assertRaises(InvalidCallError):
            OrderItem.find_one(self.db, 2)


class TestPagination(TestCase):
    def setUp(self):
        self.db = make_database()
        self.db.forget()

    def test_second_page(self):
        page = Order.query(self.db).order_by("id").paginate(2, 2)

        self.assertIsInstance(page, PaginationResult)
        self.assertEqual([o.get_attribute("id") for o in page.items], [3])
        self.assertEqual((page.total, page.last_page), (3, 2))
        self.assertTrue(page.has_prev)
        self.assertFalse(page.has_next)
        self.assertEqual(page.to_dict()["data"][0]["id"], 3)

    def test_empty_result_skips_the_row_query(self):
        page = Order.query(self.db).and_where("id", 99).paginate()

        self.assertEqual(list(page.items), [])
        self.assertEqual(page.last_page, 1)
        self.assertEqual(len(self.db.selects()), 1)

    def test_invalid_page(self):
        with self.assertRaises(ValueError):
            Order.query(self.db).paginate(0)
