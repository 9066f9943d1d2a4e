from decimal import Decimal
from unittest import TestCase

from activeorm.core_services.Database import Database, RowSet
from activeorm.database.Events import AfterInsert, AfterSave, BeforeDelete, BeforeInsert, BeforeSave, EventDispatcherProvider
from activeorm.database.Exceptions import InvalidCallError, StaleDataError
from activeorm.database.active_record.utils.decorators import on

from orm_fixtures import Customer, Document, Item, Order, Post, Profile, make_database

EVENTS = []


class GuardedCustomer(Customer):
    @on(BeforeDelete)
    def keep(self, event):
        event.prevent_default()
        event.return_value(42)


class VetoedCustomer(Customer):
    @on(BeforeInsert)
    def veto(self, event):
        event.prevent_default()


class TracedCustomer(Customer):
    @on(BeforeSave, BeforeInsert, AfterInsert, AfterSave)
    def trace(self, event):
        EVENTS.append(type(event).__name__)


class EmailCustomer(Customer):
    __unique_keys__ = ["email"]


class MysqlDatabase(Database):
    driver = "mysql"
    identifier_quote = ("`", "`")

    def __init__(self, lastrowid):
        super().__init__()
        self.lastrowid = lastrowid
        self.statements = []

    def _execute(self, sql, params):
        self.statements.append(sql)
        return RowSet(rowcount=1, lastrowid=self.lastrowid)

    def _transaction_statement(self, sql):
        pass

    def primary_key_columns(self, table_name):
        return ["id"]


class TestInsert(TestCase):
    def setUp(self):
        self.db = make_database()

    def test_insert_assigns_generated_primary_key(self):
        customer = Customer(db=self.db, email="new@example.com", name="new")
        self.assertTrue(customer.is_new())

        self.assertTrue(customer.insert())

        self.assertFalse(customer.is_new())
        self.assertEqual(customer.get_attribute("id"), 4)
        self.assertEqual(customer.new_values(), {})
        row = self.db.query("SELECT * FROM customer WHERE id = 4")[0]
        self.assertEqual((row["email"], row["status"]), ("new@example.com", 0))

    def test_insert_skips_unset_columns(self):
        self.db.forget()
        Customer(db=self.db, email="new@example.com").insert()

        self.assertEqual(self.db.writes(), ['INSERT INTO "customer" ("email", "status") VALUES (?, ?)'])

    def test_create_saves_immediately(self):
        order = Order.create(self.db, customer_id=3, total=Decimal("9.50"), created_at=1)

        self.assertEqual(order.get_attribute("id"), 4)
        self.assertEqual(Order.find_one(self.db, 4).get_attribute("total"), Decimal("9.5"))

    def test_prevented_insert_returns_false(self):
        customer = VetoedCustomer(db=self.db, email="x@example.com")
        self.db.forget()

        self.assertFalse(customer.insert())
        self.assertTrue(customer.is_new())
        self.assertEqual(self.db.writes(), [])

    def test_save_event_order(self):
        EVENTS.clear()
        TracedCustomer(db=self.db, email="trace@example.com").save()

        self.assertEqual(EVENTS, ["BeforeSave", "BeforeInsert", "AfterInsert", "AfterSave"])


class TestUpdate(TestCase):
    def setUp(self):
        self.db = make_database()
        self.customer = Customer.find_one(self.db, 1)
        self.db.forget()

    def test_unchanged_record_writes_nothing(self):
        self.assertFalse(self.customer.save())
        self.assertFalse(self.customer.update())
        self.assertEqual(self.db.statements, [])

    def test_only_dirty_properties_are_written(self):
        self.customer.set_attribute("name", "renamed")

        self.assertTrue(self.customer.save())

        self.assertEqual(self.db.statements, [('UPDATE "customer" SET "name" = ? WHERE "id" = ?', ("renamed", 1))])
        self.assertFalse(self.customer.save())

    def test_update_with_values(self):
        self.assertEqual(self.customer.update({"status": 5}), 1)
        self.assertEqual(self.customer.old_value("status"), 5)
        self.assertEqual(Customer.find_one(self.db, 1).get_attribute("status"), 5)

    def test_update_restricted_to_names(self):
        self.customer.set_attribute("name", "renamed")
        self.customer.set_attribute("address", "moved")

        self.customer.update(["address"])

        self.assertEqual(self.customer.new_values(), {"name": "renamed"})

    def test_new_record_cannot_be_updated(self):
        with self.assertRaises(InvalidCallError):
            Customer(db=self.db).update()

    def test_update_counters(self):
        self.assertTrue(self.customer.update_counters({"status": 2}))

        self.assertEqual(self.customer.get_attribute("status"), 3)
        self.assertEqual(self.db.statements[0][0], 'UPDATE "customer" SET "status" = "status" + ? WHERE "id" = ?')
        self.assertEqual(Customer.find_one(self.db, 1).get_attribute("status"), 3)

    def test_refresh(self):
        Customer.update_all(self.db, {"name": "changed elsewhere"}, {"id": 1})

        self.assertTrue(self.customer.refresh())
        self.assertEqual(self.customer.get_attribute("name"), "changed elsewhere")
        self.assertEqual(self.customer.new_values(), {})

    def test_equals(self):
        self.assertTrue(self.customer.equals(Customer.find_one(self.db, 1)))
        self.assertFalse(self.customer.equals(Customer.find_one(self.db, 2)))
        self.assertFalse(self.customer.equals(Customer(db=self.db, id=1)))


class TestOptimisticLock(TestCase):
    def setUp(self):
        self.db = make_database()
        self.first = Document.find_one(self.db, 1)
        self.second = Document.find_one(self.db, 1)

    def test_version_is_checked_and_incremented(self):
        self.first.set_attribute("title", "first")

        self.assertEqual(self.first.update(), 1)

        self.assertEqual(self.first.get_attribute("version"), 1)
        self.assertEqual(self.first.new_values(), {})

    def test_stale_update_raises(self):
        self.first.set_attribute("title", "first")
        self.first.update()
        self.second.set_attribute("title", "second")

        with self.assertRaises(StaleDataError):
            self.second.update()

        self.assertEqual(self.db.query("SELECT title FROM document WHERE id = 1")[0]["title"], "first")

    def test_stale_delete_raises(self):
        self.first.set_attribute("title", "first")
        self.first.update()

        with self.assertRaises(StaleDataError):
            self.second.delete()
        self.assertEqual(self.first.delete(), 1)


class TestDelete(TestCase):
    def setUp(self):
        self.db = make_database()

    def tearDown(self):
        EventDispatcherProvider.reset()

    def test_delete_marks_record_new(self):
        order = Order.find_one(self.db, 3)

        self.assertEqual(order.delete(), 1)

        self.assertTrue(order.is_new())
        self.assertIsNone(Order.find_one(self.db, 3))

    def test_prevented_delete_returns_listener_value(self):
        customer = GuardedCustomer.find_one(self.db, 1)
        self.db.forget()

        self.assertEqual(customer.delete(), 42)
        self.assertEqual(self.db.writes(), [])

    def test_bulk_statements(self):
        self.assertEqual(Customer.update_all(self.db, {"status": 9}, {"status": 1}), 2)
        self.assertEqual(Customer.delete_all(self.db, {"status": 9}), 2)
        self.assertEqual(Customer.query(self.db).count(), 1)


class TestSoftDeleteAndTimestamps(TestCase):
    def setUp(self):
        self.db = make_database()

    def test_timestamps_are_stamped_on_insert(self):
        post = Post.create(self.db, title="hello")

        self.assertIsNotNone(post.get_attribute("created_at"))
        self.assertIsNotNone(post.get_attribute("updated_at"))
        self.assertIsNone(post.get_attribute("deleted_at"))

    def test_update_stamps_updated_at(self):
        post = Post.create(self.db, title="hello")
        self.db.forget()

        post.set_attribute("title", "changed")
        post.save(["title"])

        self.assertIn('"updated_at" = ?', self.db.writes()[0])

    def test_delete_is_soft(self):
        post = Post.create(self.db, title="hello")

        self.assertEqual(post.delete(), 1)

        self.assertIsNotNone(post.get_attribute("deleted_at"))
        self.assertEqual(Post.query(self.db).all(), [])
        self.assertEqual(self.db.query("SELECT COUNT(*) AS n FROM post")[0]["n"], 1)

    def test_soft_deleted_record_is_not_deleted_twice(self):
        post = Post.create(self.db, title="hello")
        post.delete()
        self.db.forget()

        self.assertEqual(post.delete(), 0)
        self.assertEqual(self.db.writes(), [])


class TestUpsert(TestCase):
    def setUp(self):
        self.db = make_database()

    def test_existing_row_is_updated(self):
        customer = Customer(db=self.db, id=1, email="user1-new@example.com", name="upserted")

        self.assertTrue(customer.upsert())

        self.assertFalse(customer.is_new())
        self.assertEqual(customer.get_attribute("address"), "address1")
        row = self.db.query("SELECT * FROM customer WHERE id = 1")[0]
        self.assertEqual(row["name"], "upserted")
        self.assertEqual(self.db.query("SELECT COUNT(*) AS n FROM customer")[0]["n"], 3)

    def test_missing_row_is_inserted(self):
        customer = Customer(db=self.db, email="fresh@example.com", name="fresh")

        self.assertTrue(customer.upsert())

        self.assertEqual(customer.get_attribute("id"), 4)
        self.assertEqual(self.db.query("SELECT COUNT(*) AS n FROM customer")[0]["n"], 4)

    def test_existing_row_is_left_alone(self):
        customer = Customer(db=self.db, id=1, name="ignored")

        self.assertTrue(customer.upsert(update_properties=False))

        self.assertEqual(self.db.query("SELECT name FROM customer WHERE id = 1")[0]["name"], "user1")

    def test_conflict_without_changes_reads_back_the_existing_row(self):
        Profile(db=self.db, description="second").insert()
        customer = EmailCustomer(db=self.db, email="user1@example.com")

        self.assertTrue(customer.upsert(update_properties=False))

        self.assertEqual(customer.get_attribute("id"), 1)
        self.assertEqual(customer.get_attribute("name"), "user1")
        self.assertFalse(customer.is_new())

        customer.set_attribute("address", "moved")
        customer.save()

        rows = self.db.query("SELECT id, address FROM customer WHERE id IN (1, 2) ORDER BY id")
        self.assertEqual([row["address"] for row in rows], ["moved", "address2"])

    def test_generated_key_without_returning_is_cast(self):
        db = MysqlDatabase(lastrowid="9")
        customer = Customer(db=db, email="fresh@example.com", name="fresh")

        self.assertTrue(customer.upsert())

        self.assertIn("ON DUPLICATE KEY UPDATE", db.statements[0])
        self.assertNotIn("RETURNING", db.statements[0])
        self.assertEqual(customer.get_attribute("id"), 9)
        self.assertFalse(customer.is_new())

    def test_explicit_update_values(self):
        Customer(db=self.db, id=2, name="ignored").upsert(update_properties={"status": 7})

        row = self.db.query("SELECT * FROM customer WHERE id = 2")[0]
        self.assertEqual((row["name"], row["status"]), ("user2", 7))


class TestLinking(TestCase):
    def setUp(self):
        self.db = make_database()

    def test_link_sets_foreign_key_and_saves(self):
        customer = Customer.find_one(self.db, 3)
        self.assertEqual(list(customer.relation("orders")), [])
        order = Order(db=self.db, total=Decimal("5"), created_at=1)

        customer.link("orders", order)

        self.assertFalse(order.is_new())
        self.assertEqual(order.get_attribute("customer_id"), 3)
        self.assertEqual(list(customer.relation("orders")), [order])
        self.assertEqual(Order.query(self.db).and_where("customer_id", 3).count(), 1)

    def test_link_through_junction_model(self):
        order = Order.find_one(self.db, 3)
        item = Item.find_one(self.db, 5)

        order.link("items", item, {"quantity": 2, "subtotal": Decimal("30")})

        rows = self.db.query("SELECT * FROM order_item WHERE order_id = 3 AND item_id = 5")
        self.assertEqual(rows[0]["quantity"], 2)
        self.assertEqual(sorted(i.get_attribute("id") for i in Order.find_one(self.db, 3).relation("items")), [2, 5])

    def test_link_through_junction_table(self):
        order = Order.find_one(self.db, 3)

        order.link("items_via_table", Item.find_one(self.db, 4), {"quantity": 1})

        self.assertEqual(len(self.db.query("SELECT * FROM order_item WHERE order_id = 3")), 2)

    def test_link_new_models_through_junction_is_rejected(self):
        with self.assertRaises(InvalidCallError):
            Order.find_one(self.db, 3).link("items", Item(db=self.db, name="new"))

    def test_unlink_with_delete_removes_junction_row(self):
        order = Order.find_one(self.db, 1)
        item = Item.find_one(self.db, 2)

        order.unlink("items", item, delete=True)

        self.assertEqual(self.db.query("SELECT item_id FROM order_item WHERE order_id = 1"), [{"item_id": 1}])

    def test_unlink_nulls_foreign_key(self):
        customer = Customer.find_one(self.db, 2)
        order = Order.find_one(self.db, 2)

        customer.unlink("orders", order)

        self.assertIsNone(Order.find_one(self.db, 2).get_attribute("customer_id"))

    def test_unlink_all(self):
        customer = Customer.find_one(self.db, 2)

        customer.unlink_all("orders")

        self.assertEqual(Order.query(self.db).where_null("customer_id").count(), 2)
        self.assertFalse(customer.is_relation_populated("orders"))
