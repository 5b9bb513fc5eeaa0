import asyncio
import os
import sqlite3
import sys
import tempfile
import time
import unittest
from contextlib import asynccontextmanager

# Ensure project src/ is on sys.path for imports
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
src_path = os.path.join(ROOT, "src")
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from artshop.db import crud  # noqa: E402
from artshop.db import database as db_database  # noqa: E402
from artshop.db import images  # noqa: E402
from artshop.db.models import (  # noqa: E402
    Artwork,
    Comment,
    Forbidden,
    ImageUpload,
    Invalid,
    InvalidCredentials,
    LikeState,
    NotFound,
    OrderConfirmation,
    Session,
    SupportMessage,
)
from artshop.utils import config  # noqa: E402

ADMIN_EMAIL = "admin@artshop.test"
ADMIN_PASS = "s3cret-admin"


def png(name: str = "sunset.png") -> ImageUpload:
    return ImageUpload(name, b"\x89PNG\r\n\x1a\nfake", "image/png")


class CrudTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        # Point the DB and uploads to a temporary directory and force re-initialization
        self.temp_dir = tempfile.TemporaryDirectory()
        self.upload_dir = os.path.join(self.temp_dir.name, "uploads")
        config._settings = config.Settings(
            admin_email=ADMIN_EMAIL,
            admin_password=ADMIN_PASS,
            upload_dir=self.upload_dir,
            bcrypt_rounds=4,
        )
        db_database.DB_PATH = os.path.join(self.temp_dir.name, "test.sqlite")
        db_database._initialized = False
        images.set_image_store(images.LocalImageStore(self.upload_dir, timeout=5))

    async def asyncSetUp(self):
        # Touch initialization by opening a connection
        async with db_database.connect() as conn:
            cur = await conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table';"
            )
            await cur.fetchall()
            await cur.close()

        self.admin = await crud.login(ADMIN_EMAIL, ADMIN_PASS)
        self.jane = await crud.register("jane@example.com", "janepass", "Jane Doe")

    def tearDown(self):
        images.set_image_store(None)
        db_database.DB_PATH = None
        config._settings = None
        self.temp_dir.cleanup()

    def uploaded_files(self):
        if not os.path.isdir(self.upload_dir):
            return []
        return sorted(os.listdir(self.upload_dir))

    async def make_artwork(self, title="Sunset", price=100, description="Warm sky"):
        artwork = await crud.create_artwork(
            self.admin, title, description, price, png()
        )
        self.assertIsInstance(artwork, Artwork)
        return artwork

    async def order(self, artwork_id, quantity=2, **overrides):
        fields = dict(
            buyer_name="Jane Doe",
            buyer_email=None,
            phone="9876543210",
            address_line1="12 Main St",
            address_line2=None,
            postal_code="560001",
            payment_method="cod",
            quantity=quantity,
        )
        fields.update(overrides)
        return await crud.place_order(artwork_id, **fields)

    # ---------- Identity ----------

    async def test_admin_is_seeded_with_hashed_password(self):
        self.assertIsInstance(self.admin, Session)
        self.assertEqual(self.admin.email, ADMIN_EMAIL)
        self.assertEqual(self.admin.name, "Admin")

        user = await crud.get_user(self.admin.id)
        self.assertNotEqual(user.password_hash, ADMIN_PASS)
        self.assertTrue(user.password_hash.startswith("$2"))

    async def test_register_and_login(self):
        self.assertIsInstance(self.jane, Session)
        self.assertEqual(self.jane.name, "Jane Doe")
        self.assertFalse(await crud.email_available("jane@example.com"))
        self.assertTrue(await crud.email_available("new@example.com"))

        session = await crud.login(" jane@example.com ", "janepass")
        self.assertEqual(session, self.jane)

    async def test_register_rejects_duplicates_and_short_passwords(self):
        dup = await crud.register("jane@example.com", "another-pass")
        self.assertIsInstance(dup, Invalid)
        self.assertTrue(dup.has_field("email"))
        self.assertIn("Email already registered", dup.messages)

        short = await crud.register("bob@example.com", "12345")
        self.assertIsInstance(short, Invalid)
        self.assertTrue(short.has_field("password"))

        blank = await crud.register("   ", "")
        self.assertEqual(
            {e.field for e in blank.errors}, {"email", "password"}
        )
        self.assertTrue(await crud.email_available("bob@example.com"))

    async def test_login_failures_are_indistinguishable(self):
        wrong_pwd = await crud.login("jane@example.com", "not-her-password")
        no_user = await crud.login("nobody@example.com", "janepass")
        empty = await crud.login("", "")

        self.assertIsInstance(wrong_pwd, InvalidCredentials)
        self.assertEqual(wrong_pwd, no_user)
        self.assertEqual(no_user, empty)

    async def test_login_external_creates_account_once(self):
        first = await crud.login_external("ext@example.com", "Ext User", "uid-1")
        self.assertIsInstance(first, Session)
        self.assertEqual(first.name, "Ext User")

        again = await crud.login_external("ext@example.com", "Renamed", "uid-1")
        self.assertEqual(again.id, first.id)

        # the stored marker never verifies as a password
        self.assertIsInstance(
            await crud.login("ext@example.com", "!external:uid-1"), InvalidCredentials
        )

        no_name = await crud.login_external("anon@example.com", None, "uid-2")
        self.assertEqual(no_name.name, "anon")

        missing = await crud.login_external("  ", "X", "uid-3")
        self.assertIsInstance(missing, Invalid)

    async def test_list_users_is_admin_only(self):
        self.assertIsInstance(await crud.list_users(self.jane), Forbidden)
        self.assertIsInstance(await crud.list_users(None), Forbidden)

        users = await crud.list_users(self.admin)
        self.assertEqual(
            {u.email for u in users}, {ADMIN_EMAIL, "jane@example.com"}
        )

    async def test_password_hashing_keeps_event_loop_responsive(self):
        orig_hash, orig_verify = crud.hash_password, crud.verify_password

        def slow_hash(password):
            time.sleep(0.3)
            return orig_hash(password)

        def slow_verify(password, password_hash):
            time.sleep(0.3)
            return orig_verify(password, password_hash)

        gaps = []
        done = asyncio.Event()

        async def ticker():
            last = time.monotonic()
            while not done.is_set():
                await asyncio.sleep(0.01)
                now = time.monotonic()
                gaps.append(now - last)
                last = now

        try:
            crud.hash_password = slow_hash  # type: ignore
            crud.verify_password = slow_verify  # type: ignore
            ticks = asyncio.create_task(ticker())
            session = await crud.register("bob@example.com", "bobspass")
            again = await crud.login("bob@example.com", "bobspass")
            done.set()
            await ticks
        finally:
            crud.hash_password = orig_hash  # restore
            crud.verify_password = orig_verify  # restore

        self.assertIsInstance(session, Session)
        self.assertEqual(again, session)
        self.assertGreater(len(gaps), 20)
        self.assertLess(max(gaps), 0.25)

    # ---------- Catalog ----------

    async def test_create_artwork_stores_image_and_lists_newest_first(self):
        first = await self.make_artwork("Sunset", "100")
        second = await self.make_artwork("Moonrise", 250.5, "Cold night")

        self.assertTrue(first.image_ref.startswith("/uploads/"))
        self.assertEqual(first.price, 100.0)
        self.assertEqual(len(self.uploaded_files()), 2)

        listing = await crud.list_artworks()
        self.assertEqual([a.id for a in listing], [second.id, first.id])

        self.assertEqual(
            [a.title for a in await crud.list_artworks("SUN")], ["Sunset"]
        )
        self.assertEqual(
            [a.title for a in await crud.list_artworks("cold")], ["Moonrise"]
        )
        self.assertEqual(await crud.list_artworks("nothing"), [])

    async def test_search_matches_wildcards_literally(self):
        await self.make_artwork("100% Cotton", 10, "")
        await self.make_artwork("1000 Cranes", 10, "")
        await self.make_artwork("Blue_Hour", 10, "")
        await self.make_artwork("Blue Hour", 10, "")

        self.assertEqual(
            [a.title for a in await crud.list_artworks("100%")], ["100% Cotton"]
        )
        self.assertEqual(
            [a.title for a in await crud.list_artworks("blue_")], ["Blue_Hour"]
        )
        self.assertEqual(await crud.list_artworks("%"), await crud.list_artworks("100%"))

    async def test_create_artwork_rejects_bad_input_before_writing(self):
        cases = [
            ("", 100, png()),
            ("Sunset", "abc", png()),
            ("Sunset", -5, png()),
            ("Sunset", 0, png()),
            ("Sunset", "inf", png()),
            ("Sunset", 100, None),
        ]
        for title, price, image in cases:
            with self.subTest(title=title, price=price):
                result = await crud.create_artwork(
                    self.admin, title, "", price, image
                )
                self.assertIsInstance(result, Invalid)

        self.assertEqual(await crud.list_artworks(), [])
        self.assertEqual(self.uploaded_files(), [])

    async def test_catalog_changes_are_admin_only(self):
        art = await self.make_artwork()

        self.assertIsInstance(
            await crud.create_artwork(self.jane, "Mine", "", 10, png()), Forbidden
        )
        self.assertIsInstance(
            await crud.update_artwork(self.jane, art.id, "Mine", "", 10), Forbidden
        )
        self.assertIsInstance(await crud.delete_artwork(self.jane, art.id), Forbidden)
        self.assertEqual(len(self.uploaded_files()), 1)
        self.assertEqual(await crud.get_artwork(art.id), art)

    async def test_failed_insert_removes_stored_image(self):
        class FailingConn:
            async def execute(self, *_args, **_kwargs):
                raise sqlite3.OperationalError("disk I/O error")

        @asynccontextmanager
        async def failing_connect():
            yield FailingConn()

        orig_connect = crud.connect
        try:
            crud.connect = failing_connect  # type: ignore
            with self.assertRaises(sqlite3.OperationalError):
                await crud.create_artwork(self.admin, "Sunset", "", 100, png())
        finally:
            crud.connect = orig_connect  # restore

        self.assertEqual(self.uploaded_files(), [])

    async def test_update_artwork_replaces_image(self):
        art = await self.make_artwork()
        old_file = os.path.basename(art.image_ref)

        kept = await crud.update_artwork(self.admin, art.id, "Sunset II", "", 120)
        self.assertEqual(kept.title, "Sunset II")
        self.assertEqual(kept.price, 120.0)
        self.assertEqual(kept.image_ref, art.image_ref)

        replaced = await crud.update_artwork(
            self.admin, art.id, "Sunset II", "", 120, png("new.jpg")
        )
        self.assertNotEqual(replaced.image_ref, art.image_ref)
        self.assertTrue(replaced.image_ref.endswith(".jpg"))
        self.assertNotIn(old_file, self.uploaded_files())
        self.assertEqual(len(self.uploaded_files()), 1)

    async def test_update_artwork_invalid_and_missing(self):
        art = await self.make_artwork()

        bad = await crud.update_artwork(self.admin, art.id, " ", "", "-1")
        self.assertEqual({e.field for e in bad.errors}, {"title", "price"})
        self.assertEqual(await crud.get_artwork(art.id), art)

        missing = await crud.update_artwork(self.admin, 9999, "X", "", 10, png())
        self.assertEqual(missing, NotFound("artwork", 9999))
        self.assertEqual(len(self.uploaded_files()), 1)

    async def test_delete_artwork_cascades_social_rows(self):
        art = await self.make_artwork()
        await crud.toggle_wishlist(self.jane.id, art.id)
        await crud.toggle_like(self.jane.id, art.id)
        await crud.add_comment(self.jane.id, art.id, "Lovely colours")

        self.assertTrue(await crud.delete_artwork(self.admin, art.id))
        self.assertIsNone(await crud.get_artwork(art.id))
        self.assertEqual(self.uploaded_files(), [])
        self.assertEqual(await crud.wishlist_ids(self.jane.id), set())
        self.assertEqual(await crud.like_count(art.id), 0)
        self.assertEqual(await crud.list_comments(art.id), [])

        self.assertFalse(await crud.delete_artwork(self.admin, art.id))

    async def test_delete_artwork_with_orders_keeps_listings_working(self):
        art = await self.make_artwork()
        placed = await self.order(art.id, buyer_email="jane@example.com")
        await crud.delete_artwork(self.admin, art.id)

        listing = await crud.list_orders(self.admin)
        self.assertEqual(len(listing), 1)
        order, artwork = listing[0]
        self.assertEqual(order.id, placed.order.id)
        self.assertIsNone(artwork)
        self.assertEqual(order.artwork_title, "Sunset")
        self.assertEqual(order.total, 200.0)

        mine = await crud.list_orders_for_buyer("jane@example.com")
        self.assertEqual([o.id for o, _ in mine], [placed.order.id])

        # the order can still be moved along
        moved = await crud.set_order_status(self.admin, order.id, "shipped")
        self.assertEqual(moved.status, "shipped")

    async def test_failed_delete_keeps_row_and_image(self):
        art = await self.make_artwork()

        class FailingConn:
            async def execute(self, *_args, **_kwargs):
                raise sqlite3.OperationalError("database is locked")

        @asynccontextmanager
        async def failing_connect():
            yield FailingConn()

        async def known_artwork(_artwork_id):
            return art

        orig_connect, orig_get_artwork = crud.connect, crud.get_artwork
        try:
            crud.connect = failing_connect  # type: ignore
            crud.get_artwork = known_artwork  # type: ignore
            with self.assertRaises(sqlite3.OperationalError):
                await crud.delete_artwork(self.admin, art.id)
        finally:
            crud.connect = orig_connect  # restore
            crud.get_artwork = orig_get_artwork  # restore

        self.assertEqual(await crud.get_artwork(art.id), art)
        self.assertEqual(self.uploaded_files(), [os.path.basename(art.image_ref)])

    async def test_delete_removes_row_before_image(self):
        art = await self.make_artwork()
        seen = []

        orig_delete_image = crud._delete_image_quietly

        async def recording_delete(reference):
            seen.append((reference, await crud.get_artwork(art.id)))
            await orig_delete_image(reference)

        try:
            crud._delete_image_quietly = recording_delete  # type: ignore
            self.assertTrue(await crud.delete_artwork(self.admin, art.id))
        finally:
            crud._delete_image_quietly = orig_delete_image  # restore

        self.assertEqual(seen, [(art.image_ref, None)])
        self.assertEqual(self.uploaded_files(), [])

    # ---------- Wishlist & likes ----------

    async def test_toggle_wishlist(self):
        art = await self.make_artwork()
        other = await self.make_artwork("Moonrise")

        self.assertTrue(await crud.toggle_wishlist(self.jane.id, art.id))
        self.assertTrue(await crud.toggle_wishlist(self.jane.id, other.id))
        self.assertEqual(await crud.wishlist_ids(self.jane.id), {art.id, other.id})
        self.assertEqual(len(await crud.list_wishlist(self.jane.id)), 2)

        self.assertFalse(await crud.toggle_wishlist(self.jane.id, art.id))
        self.assertEqual(
            [a.id for a in await crud.list_wishlist(self.jane.id)], [other.id]
        )
        self.assertEqual(await crud.wishlist_ids(self.admin.id), set())

        self.assertEqual(
            await crud.toggle_wishlist(self.jane.id, 9999), NotFound("artwork", 9999)
        )

    async def test_concurrent_wishlist_toggles_leave_one_row(self):
        art = await self.make_artwork()

        async def never_exists(*_args, **_kwargs):
            return False

        # both toggles see "absent" and race to insert
        orig_pair_exists = crud._pair_exists
        try:
            crud._pair_exists = never_exists  # type: ignore
            results = await asyncio.gather(
                crud.toggle_wishlist(self.jane.id, art.id),
                crud.toggle_wishlist(self.jane.id, art.id),
            )
        finally:
            crud._pair_exists = orig_pair_exists  # restore

        self.assertEqual(results, [True, True])
        async with db_database.connect() as conn:
            cur = await conn.execute(
                "SELECT COUNT(*) FROM wishlist WHERE user_id = ? AND artwork_id = ?;",
                (self.jane.id, art.id),
            )
            row = await cur.fetchone()
            await cur.close()
        self.assertEqual(row[0], 1)

    async def test_toggle_like_counts(self):
        art = await self.make_artwork()

        self.assertEqual(
            await crud.toggle_like(self.jane.id, art.id), LikeState(True, 1)
        )
        self.assertEqual(
            await crud.toggle_like(self.admin.id, art.id), LikeState(True, 2)
        )
        self.assertTrue(await crud.has_liked(self.jane.id, art.id))

        self.assertEqual(
            await crud.toggle_like(self.jane.id, art.id), LikeState(False, 1)
        )
        self.assertFalse(await crud.has_liked(self.jane.id, art.id))
        self.assertEqual(await crud.like_count(art.id), 1)

        self.assertIsInstance(await crud.toggle_like(self.jane.id, 9999), NotFound)

    async def test_toggles_report_unknown_user(self):
        art = await self.make_artwork()

        self.assertEqual(
            await crud.toggle_wishlist(9999, art.id), NotFound("user", 9999)
        )
        self.assertEqual(await crud.toggle_like(9999, art.id), NotFound("user", 9999))
        self.assertEqual(await crud.wishlist_ids(9999), set())
        self.assertEqual(await crud.like_count(art.id), 0)

    # ---------- Comments ----------

    async def test_comment_length_bounds(self):
        art = await self.make_artwork()

        ok = await crud.add_comment(self.jane.id, art.id, "  " + "a" * 500 + "  ")
        self.assertIsInstance(ok, Comment)
        self.assertEqual(len(ok.comment), 500)

        too_long = await crud.add_comment(self.jane.id, art.id, "a" * 501)
        self.assertIsInstance(too_long, Invalid)
        self.assertTrue(too_long.has_field("comment"))

        blank = await crud.add_comment(self.jane.id, art.id, " \n\t ")
        self.assertIsInstance(blank, Invalid)

        self.assertEqual(len(await crud.list_comments(art.id)), 1)

    async def test_comments_snapshot_author_and_list_newest_first(self):
        art = await self.make_artwork()
        nameless = await crud.register("sam@example.com", "sampass")

        first = await crud.add_comment(self.jane.id, art.id, "First!")
        second = await crud.add_comment(nameless.id, art.id, "Second")

        self.assertEqual(first.user_name, "Jane Doe")
        self.assertEqual(second.user_name, "sam")
        self.assertEqual(
            [c.id for c in await crud.list_comments(art.id)], [second.id, first.id]
        )

        self.assertEqual(
            await crud.add_comment(self.jane.id, 9999, "Hello"),
            NotFound("artwork", 9999),
        )
        self.assertEqual(
            await crud.add_comment(9999, art.id, "Hello"), NotFound("user", 9999)
        )

    # ---------- Checkout & orders ----------

    async def test_end_to_end_sunset_order(self):
        art = await self.make_artwork("Sunset", 100)

        placed = await self.order(art.id, quantity=2)
        self.assertIsInstance(placed, OrderConfirmation)
        order = placed.order
        self.assertEqual(order.quantity, 2)
        self.assertEqual(order.status, "pending")
        self.assertEqual(order.address, "12 Main St, Pin: 560001")
        self.assertIsNone(order.buyer_email)
        self.assertEqual(order.total, 200.0)
        self.assertEqual(placed.artwork, art)

        delivered = await crud.set_order_status(self.admin, order.id, "delivered")
        self.assertEqual(delivered.status, "delivered")

        # arbitrary jumps, including backwards, are allowed
        reopened = await crud.set_order_status(self.admin, order.id, "pending")
        self.assertEqual(reopened.status, "pending")
        self.assertEqual((await crud.get_order(order.id)).status, "pending")

    async def test_quantity_bounds(self):
        art = await self.make_artwork("Sunset", 100)

        for qty in (1, 5, "3"):
            with self.subTest(qty=qty):
                self.assertIsInstance(await self.order(art.id, qty), OrderConfirmation)

        for qty in (0, 6):
            with self.subTest(qty=qty):
                result = await self.order(art.id, qty)
                self.assertIsInstance(result, Invalid)
                self.assertIn("Quantity must be between 1 and 5", result.messages)
                self.assertEqual(result.total, 100 * qty)

        # unparsable quantity counts as one
        fallback = await self.order(art.id, "lots")
        self.assertEqual(fallback.order.quantity, 1)

        # a decimal quantity keeps its integer part
        truncated = await self.order(art.id, "2.5")
        self.assertEqual(truncated.order.quantity, 2)
        self.assertEqual(truncated.order.total, 200.0)

        self.assertEqual(len(await crud.list_orders(self.admin)), 5)

    async def test_checkout_collects_every_field_error(self):
        art = await self.make_artwork("Sunset", 100)

        result = await crud.place_order(
            art.id,
            buyer_name="J",
            buyer_email="",
            phone="123",
            address_line1="x",
            address_line2="",
            postal_code="12",
            payment_method="card",
            quantity=9,
        )
        self.assertIsInstance(result, Invalid)
        self.assertEqual(
            [e.field for e in result.errors],
            [
                "buyer_name",
                "phone",
                "address_line1",
                "postal_code",
                "payment_method",
                "quantity",
            ],
        )
        self.assertEqual(result.total, 900.0)
        self.assertEqual(await crud.list_orders(self.admin), [])

    async def test_missing_artwork_wins_over_field_errors(self):
        result = await crud.place_order(
            9999, "", None, "", "", None, "", "cod", 0
        )
        self.assertEqual(result, NotFound("artwork", 9999))

    async def test_order_keeps_price_snapshot(self):
        art = await self.make_artwork("Sunset", 100)
        placed = await self.order(
            art.id,
            quantity=3,
            buyer_email=" jane@example.com ",
            address_line2="Flat 4",
            payment_method="online",
        )
        self.assertEqual(placed.order.address, "12 Main St, Flat 4, Pin: 560001")
        self.assertEqual(placed.order.buyer_email, "jane@example.com")
        self.assertEqual(placed.order.payment_method, "online")

        await crud.update_artwork(self.admin, art.id, "Sunset (reprint)", "", 40)

        order = await crud.get_order(placed.order.id)
        self.assertEqual(order.unit_price, 100.0)
        self.assertEqual(order.artwork_title, "Sunset")
        self.assertEqual(order.total, 300.0)

        (mine, current), = await crud.list_orders_for_buyer("jane@example.com")
        self.assertEqual(mine.total, 300.0)
        self.assertEqual(current.price, 40.0)

    async def test_set_order_status_rules(self):
        art = await self.make_artwork()
        order = (await self.order(art.id)).order

        self.assertIsInstance(
            await crud.set_order_status(self.jane, order.id, "accepted"), Forbidden
        )
        unknown = await crud.set_order_status(self.admin, order.id, "lost")
        self.assertIsInstance(unknown, Invalid)
        self.assertTrue(unknown.has_field("status"))
        self.assertEqual(
            await crud.set_order_status(self.admin, 9999, "accepted"),
            NotFound("order", 9999),
        )

        for status in ("accepted", "shipped", "accepted", "delivered"):
            moved = await crud.set_order_status(self.admin, order.id, status)
            self.assertEqual(moved.status, status)

    async def test_order_listings(self):
        art = await self.make_artwork()
        first = (await self.order(art.id, buyer_email="jane@example.com")).order
        await self.order(art.id, buyer_email="bob@example.com")
        third = (await self.order(art.id, buyer_email="jane@example.com")).order

        self.assertIsInstance(await crud.list_orders(self.jane), Forbidden)
        self.assertEqual(len(await crud.list_orders(self.admin)), 3)

        mine = await crud.list_orders_for_buyer("jane@example.com")
        self.assertEqual([o.id for o, _ in mine], [third.id, first.id])
        self.assertTrue(all(a == art for _, a in mine))
        self.assertEqual(await crud.list_orders_for_buyer("nobody@example.com"), [])

    # ---------- Support ----------

    async def test_support_messages(self):
        short = await crud.create_support_message(self.jane, "Hi", "Help")
        self.assertEqual({e.field for e in short.errors}, {"subject", "message"})

        sent = await crud.create_support_message(
            self.jane, " Late order ", "My order has not arrived yet."
        )
        self.assertIsInstance(sent, SupportMessage)
        self.assertEqual(sent.subject, "Late order")
        self.assertEqual(sent.user_name, "Jane Doe")
        self.assertEqual(sent.user_email, "jane@example.com")
        self.assertEqual(sent.status, "pending")

        self.assertIsInstance(await crud.list_support_messages(self.jane), Forbidden)
        inbox = await crud.list_support_messages(self.admin)
        self.assertEqual([m.id for m in inbox], [sent.id])


if __name__ == "__main__":
    unittest.main()
