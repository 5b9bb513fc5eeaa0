# src/artshop/db/crud.py
from __future__ import annotations

import asyncio
import functools
from sqlite3 import Error as SqliteError, IntegrityError
from typing import List, Optional, Set, Tuple, Union

import aiosqlite

from artshop.db import models
from artshop.db.database import connect
from artshop.db.images import ImageStoreError, get_image_store
from artshop.utils import pure
from artshop.utils.logger import get_logger
from artshop.utils.security import (
    hash_password,
    is_admin,
    unusable_password,
    verify_password,
)

_logger = get_logger(__name__)

ARTWORK_COLUMNS = "id, title, description, price, image_ref, created_at"
ORDER_COLUMNS = (
    "id, artwork_id, buyer_name, buyer_email, phone, address, payment_method, "
    "quantity, status, unit_price, artwork_title, created_at"
)
USER_COLUMNS = "id, email, password_hash, name, created_at"
COMMENT_COLUMNS = "id, user_id, artwork_id, user_name, comment, created_at"
SUPPORT_COLUMNS = (
    "id, user_id, user_name, user_email, subject, message, status, created_at"
)


def _is_unique_violation(exc: IntegrityError) -> bool:
    return "UNIQUE constraint failed" in str(exc)


def _invalid(errors: List[models.FieldError], total: Optional[float] = None):
    return models.Invalid(errors=tuple(errors), total=total)


def _artwork(row) -> models.Artwork:
    return models.Artwork(
        id=row[0],
        title=row[1],
        description=row[2] or "",
        price=float(row[3]),
        image_ref=row[4],
        created_at=row[5],
    )


def _order(row) -> models.Order:
    return models.Order(
        id=row[0],
        artwork_id=row[1],
        buyer_name=row[2],
        buyer_email=row[3],
        phone=row[4],
        address=row[5],
        payment_method=row[6],
        quantity=int(row[7]),
        status=row[8],
        unit_price=float(row[9]),
        artwork_title=row[10],
        created_at=row[11],
    )


def _user(row) -> models.User:
    return models.User(
        id=row[0], email=row[1], password_hash=row[2], name=row[3], created_at=row[4]
    )


def _comment(row) -> models.Comment:
    return models.Comment(
        id=row[0],
        user_id=row[1],
        artwork_id=row[2],
        user_name=row[3],
        comment=row[4],
        created_at=row[5],
    )


def _support_message(row) -> models.SupportMessage:
    return models.SupportMessage(
        id=row[0],
        user_id=row[1],
        user_name=row[2],
        user_email=row[3],
        subject=row[4],
        message=row[5],
        status=row[6],
        created_at=row[7],
    )


def _session(user: models.User) -> models.Session:
    return models.Session(id=user.id, email=user.email, name=user.name)


def admin_only(func):
    """Reject the call with Forbidden unless the first argument is the admin session."""

    @functools.wraps(func)
    async def wrapper(session: Optional[models.Session], *args, **kwargs):
        if not is_admin(session):
            who = session.email if session else "anonymous"
            _logger.warning(f"{func.__name__} refused for {who}")
            return models.Forbidden()
        return await func(session, *args, **kwargs)

    return wrapper


async def _delete_image_quietly(reference: Optional[str]) -> None:
    """Best-effort removal of a stored image; failures are only logged."""
    if not reference:
        return
    try:
        await get_image_store().delete(reference)
    except ImageStoreError as exc:
        _logger.warning(f"Could not delete image {reference}: {exc}")


# ---------------------------
# Identity
# ---------------------------


async def email_available(email: str) -> bool:
    """True if no user already registered with exactly this email."""
    async with connect() as conn:
        cur = await conn.execute(
            "SELECT 1 FROM users WHERE email = ? LIMIT 1;", (email.strip(),)
        )
        row = await cur.fetchone()
        await cur.close()
        return row is None


async def _get_user_by_email(
    conn: aiosqlite.Connection, email: str
) -> Optional[models.User]:
    cur = await conn.execute(
        f"SELECT {USER_COLUMNS} FROM users WHERE email = ?;", (email,)
    )
    row = await cur.fetchone()
    await cur.close()
    return _user(row) if row else None


async def _insert_user(
    conn: aiosqlite.Connection, email: str, password_hash: str, name: Optional[str]
) -> models.User:
    cur = await conn.execute(
        "INSERT INTO users(email, password_hash, name) VALUES (?, ?, ?);",
        (email, password_hash, name),
    )
    user_id = cur.lastrowid
    await cur.close()
    await conn.commit()
    cur = await conn.execute(
        f"SELECT {USER_COLUMNS} FROM users WHERE id = ?;", (user_id,)
    )
    row = await cur.fetchone()
    await cur.close()
    return _user(row)


async def register(
    email: str, password: str, name: Optional[str] = None
) -> Union[models.Session, models.Invalid]:
    """
    Create an account and return its session.
    Email is stored trimmed and compared exactly; the password is stored as a bcrypt hash.
    """
    errors = pure.validate_registration(email, password)
    if errors:
        return _invalid(errors)

    email = email.strip()
    name = (name or "").strip() or None
    taken = _invalid([models.FieldError("email", "Email already registered")])
    # bcrypt runs in a worker thread
    password_hash = await asyncio.to_thread(hash_password, password)
    async with connect() as conn:
        if await _get_user_by_email(conn, email):
            return taken
        try:
            user = await _insert_user(conn, email, password_hash, name)
        except IntegrityError as exc:
            if not _is_unique_violation(exc):
                raise
            await conn.rollback()
            return taken
    _logger.info(f"Registered user {user.id}")
    return _session(user)


async def login(
    email: str, password: str
) -> Union[models.Session, models.InvalidCredentials]:
    """Session if the email exists and the password verifies; the same failure otherwise."""
    if not email or not password:
        return models.InvalidCredentials()
    async with connect() as conn:
        user = await _get_user_by_email(conn, email.strip())
    if user is None or not await asyncio.to_thread(
        verify_password, password, user.password_hash
    ):
        _logger.info("Rejected login attempt")
        return models.InvalidCredentials()
    return _session(user)


async def login_external(
    email: str, display_name: Optional[str], external_id: str
) -> Union[models.Session, models.Invalid]:
    """
    Sign in a user vouched for by an external identity provider.
    Unknown emails get an account whose password can never be used to log in.
    """
    email = (email or "").strip()
    if not email:
        return _invalid([models.FieldError("email", "Email is required")])

    async with connect() as conn:
        user = await _get_user_by_email(conn, email)
        if user is None:
            try:
                user = await _insert_user(
                    conn,
                    email,
                    unusable_password(external_id),
                    pure.display_name(display_name, email),
                )
                _logger.info(f"Created user {user.id} from external identity")
            except IntegrityError as exc:
                # created by a concurrent hand-off for the same email
                if not _is_unique_violation(exc):
                    raise
                await conn.rollback()
                user = await _get_user_by_email(conn, email)
    return _session(user)


async def get_user(user_id: int) -> Optional[models.User]:
    async with connect() as conn:
        return await _get_user(conn, user_id)


async def _get_user(
    conn: aiosqlite.Connection, user_id: int
) -> Optional[models.User]:
    cur = await conn.execute(
        f"SELECT {USER_COLUMNS} FROM users WHERE id = ?;", (user_id,)
    )
    row = await cur.fetchone()
    await cur.close()
    return _user(row) if row else None


@admin_only
async def list_users(session: models.Session) -> List[models.User]:
    """All users, newest first."""
    async with connect() as conn:
        cur = await conn.execute(
            f"SELECT {USER_COLUMNS} FROM users ORDER BY created_at DESC, id DESC;"
        )
        rows = await cur.fetchall()
        await cur.close()
    return [_user(row) for row in rows]


# ---------------------------
# Catalog
# ---------------------------


async def get_artwork(artwork_id: int) -> Optional[models.Artwork]:
    async with connect() as conn:
        return await _get_artwork(conn, artwork_id)


async def _get_artwork(
    conn: aiosqlite.Connection, artwork_id: int
) -> Optional[models.Artwork]:
    cur = await conn.execute(
        f"SELECT {ARTWORK_COLUMNS} FROM artworks WHERE id = ?;", (artwork_id,)
    )
    row = await cur.fetchone()
    await cur.close()
    return _artwork(row) if row else None


async def list_artworks(query: str = "") -> List[models.Artwork]:
    """
    Gallery listing, newest first.
    A non-empty query keeps artworks whose title or description contains it (case-insensitive).
    """
    phrase = (query or "").strip().lower()
    async with connect() as conn:
        if not phrase:
            cur = await conn.execute(
                f"""
                SELECT {ARTWORK_COLUMNS}
                FROM artworks
                ORDER BY created_at DESC, id DESC;
                """
            )
        else:
            like = f"%{pure.escape_like(phrase)}%"
            cur = await conn.execute(
                f"""
                SELECT {ARTWORK_COLUMNS}
                FROM artworks
                WHERE LOWER(title) LIKE ? ESCAPE '\\'
                   OR LOWER(description) LIKE ? ESCAPE '\\'
                ORDER BY created_at DESC, id DESC;
                """,
                (like, like),
            )
        rows = await cur.fetchall()
        await cur.close()
    return [_artwork(row) for row in rows]


@admin_only
async def create_artwork(
    session: models.Session,
    title: str,
    description: Optional[str],
    price,
    image: Optional[models.ImageUpload],
) -> Union[models.Artwork, models.Invalid]:
    """
    Validate, store the image, then insert the artwork row.
    If the insert fails the stored image is removed again before the error propagates.
    """
    errors = pure.validate_artwork_fields(title, price)
    if image is None or not image.data:
        errors.insert(0, models.FieldError("image", "Image is required"))
    if errors:
        return _invalid(errors)

    image_ref = await get_image_store().put(image)
    try:
        async with connect() as conn:
            cur = await conn.execute(
                "INSERT INTO artworks(title, description, price, image_ref) VALUES (?, ?, ?, ?);",
                (
                    title.strip(),
                    (description or "").strip(),
                    pure.parse_price(price),
                    image_ref,
                ),
            )
            artwork_id = cur.lastrowid
            await cur.close()
            await conn.commit()
            artwork = await _get_artwork(conn, artwork_id)
    except SqliteError:
        await _delete_image_quietly(image_ref)
        raise
    _logger.info(f"Created artwork {artwork.id} '{artwork.title}'")
    return artwork


@admin_only
async def update_artwork(
    session: models.Session,
    artwork_id: int,
    title: str,
    description: Optional[str],
    price,
    image: Optional[models.ImageUpload] = None,
) -> Union[models.Artwork, models.NotFound, models.Invalid]:
    """
    Update the editable fields; a supplied image replaces the current one.
    The replaced image is deleted best-effort once the row points at the new one.
    """
    errors = pure.validate_artwork_fields(title, price)
    if errors:
        return _invalid(errors)

    current = await get_artwork(artwork_id)
    if current is None:
        return models.NotFound("artwork", artwork_id)

    new_ref = await get_image_store().put(image) if image and image.data else None
    try:
        async with connect() as conn:
            res = await conn.execute(
                "UPDATE artworks SET title = ?, description = ?, price = ?, image_ref = ? WHERE id = ?;",
                (
                    title.strip(),
                    (description or "").strip(),
                    pure.parse_price(price),
                    new_ref or current.image_ref,
                    artwork_id,
                ),
            )
            await conn.commit()
            updated = await _get_artwork(conn, artwork_id) if res.rowcount else None
    except SqliteError:
        await _delete_image_quietly(new_ref)
        raise

    if updated is None:
        # removed between the lookup and the update
        await _delete_image_quietly(new_ref)
        return models.NotFound("artwork", artwork_id)
    if new_ref:
        await _delete_image_quietly(current.image_ref)
    _logger.info(f"Updated artwork {artwork_id}")
    return updated


@admin_only
async def delete_artwork(session: models.Session, artwork_id: int) -> bool:
    """
    Delete the artwork row, then best-effort its image. Return False if it did not exist.
    Orders for the artwork are kept; they carry their own title/price snapshot.
    """
    current = await get_artwork(artwork_id)
    if current is None:
        return False
    async with connect() as conn:
        res = await conn.execute("DELETE FROM artworks WHERE id = ?;", (artwork_id,))
        await conn.commit()
    if res.rowcount == 0:
        return False
    await _delete_image_quietly(current.image_ref)
    _logger.info(f"Deleted artwork {artwork_id}")
    return True


# ---------------------------
# Social: wishlist & likes
# ---------------------------


async def _pair_exists(
    conn: aiosqlite.Connection, table: str, user_id: int, artwork_id: int
) -> bool:
    cur = await conn.execute(
        f"SELECT 1 FROM {table} WHERE user_id = ? AND artwork_id = ?;",
        (user_id, artwork_id),
    )
    row = await cur.fetchone()
    await cur.close()
    return row is not None


async def _toggle_pair(
    conn: aiosqlite.Connection, table: str, user_id: int, artwork_id: int
) -> bool:
    """
    Flip presence of (user_id, artwork_id) in `table`; return True if present afterwards.
    A unique violation on insert means a concurrent toggle added the row first,
    which counts as present.
    """
    if await _pair_exists(conn, table, user_id, artwork_id):
        await conn.execute(
            f"DELETE FROM {table} WHERE user_id = ? AND artwork_id = ?;",
            (user_id, artwork_id),
        )
        await conn.commit()
        return False
    try:
        await conn.execute(
            f"INSERT INTO {table}(user_id, artwork_id) VALUES (?, ?);",
            (user_id, artwork_id),
        )
        await conn.commit()
    except IntegrityError as exc:
        if not _is_unique_violation(exc):
            raise
        await conn.rollback()
        _logger.debug(f"{table}: ({user_id}, {artwork_id}) already present")
    return True


async def _like_count(conn: aiosqlite.Connection, artwork_id: int) -> int:
    cur = await conn.execute(
        "SELECT COUNT(*) FROM artwork_likes WHERE artwork_id = ?;", (artwork_id,)
    )
    row = await cur.fetchone()
    await cur.close()
    return int(row[0]) if row else 0


async def toggle_wishlist(
    user_id: int, artwork_id: int
) -> Union[bool, models.NotFound]:
    """Add the artwork to the user's wishlist or remove it; return True if now wishlisted."""
    async with connect() as conn:
        if await _get_user(conn, user_id) is None:
            return models.NotFound("user", user_id)
        if await _get_artwork(conn, artwork_id) is None:
            return models.NotFound("artwork", artwork_id)
        return await _toggle_pair(conn, "wishlist", user_id, artwork_id)


async def wishlist_ids(user_id: int) -> Set[int]:
    async with connect() as conn:
        cur = await conn.execute(
            "SELECT artwork_id FROM wishlist WHERE user_id = ?;", (user_id,)
        )
        rows = await cur.fetchall()
        await cur.close()
    return {int(row[0]) for row in rows}


async def list_wishlist(user_id: int) -> List[models.Artwork]:
    """Wishlisted artworks, most recently added first."""
    columns = ", ".join(f"a.{c.strip()}" for c in ARTWORK_COLUMNS.split(","))
    async with connect() as conn:
        cur = await conn.execute(
            f"""
            SELECT {columns}
            FROM artworks a
            JOIN wishlist w ON a.id = w.artwork_id
            WHERE w.user_id = ?
            ORDER BY w.created_at DESC, w.id DESC;
            """,
            (user_id,),
        )
        rows = await cur.fetchall()
        await cur.close()
    return [_artwork(row) for row in rows]


async def toggle_like(
    user_id: int, artwork_id: int
) -> Union[models.LikeState, models.NotFound]:
    """Like or unlike the artwork; the count is recomputed on every call."""
    async with connect() as conn:
        if await _get_user(conn, user_id) is None:
            return models.NotFound("user", user_id)
        if await _get_artwork(conn, artwork_id) is None:
            return models.NotFound("artwork", artwork_id)
        liked = await _toggle_pair(conn, "artwork_likes", user_id, artwork_id)
        count = await _like_count(conn, artwork_id)
    return models.LikeState(liked=liked, like_count=count)


async def like_count(artwork_id: int) -> int:
    async with connect() as conn:
        return await _like_count(conn, artwork_id)


async def has_liked(user_id: int, artwork_id: int) -> bool:
    async with connect() as conn:
        return await _pair_exists(conn, "artwork_likes", user_id, artwork_id)


# ---------------------------
# Social: comments
# ---------------------------


async def add_comment(
    user_id: int, artwork_id: int, text: str
) -> Union[models.Comment, models.Invalid, models.NotFound]:
    """
    Append a comment. The author's display name is copied onto the comment,
    so later profile changes leave old comments untouched.
    """
    comment, errors = pure.validate_comment(text)
    if errors:
        return _invalid(errors)

    async with connect() as conn:
        author = await _get_user(conn, user_id)
        if author is None:
            return models.NotFound("user", user_id)
        if await _get_artwork(conn, artwork_id) is None:
            return models.NotFound("artwork", artwork_id)

        cur = await conn.execute(
            "INSERT INTO artwork_comments(user_id, artwork_id, user_name, comment) VALUES (?, ?, ?, ?);",
            (
                user_id,
                artwork_id,
                pure.display_name(author.name, author.email),
                comment,
            ),
        )
        comment_id = cur.lastrowid
        await cur.close()
        await conn.commit()

        cur = await conn.execute(
            f"SELECT {COMMENT_COLUMNS} FROM artwork_comments WHERE id = ?;",
            (comment_id,),
        )
        row = await cur.fetchone()
        await cur.close()
    return _comment(row)


async def list_comments(artwork_id: int) -> List[models.Comment]:
    """Comments on an artwork, newest first."""
    async with connect() as conn:
        cur = await conn.execute(
            f"""
            SELECT {COMMENT_COLUMNS}
            FROM artwork_comments
            WHERE artwork_id = ?
            ORDER BY created_at DESC, id DESC;
            """,
            (artwork_id,),
        )
        rows = await cur.fetchall()
        await cur.close()
    return [_comment(row) for row in rows]


# ---------------------------
# Checkout & Orders
# ---------------------------


async def _orderable_artwork(
    conn: aiosqlite.Connection, artwork_id: int
) -> Optional[models.Artwork]:
    """
    The artwork if it can be ordered right now, else None.
    Artworks have no stock: any existing artwork can be ordered any number of times.
    """
    return await _get_artwork(conn, artwork_id)


async def _get_order(
    conn: aiosqlite.Connection, order_id: int
) -> Optional[models.Order]:
    cur = await conn.execute(
        f"SELECT {ORDER_COLUMNS} FROM orders WHERE id = ?;", (order_id,)
    )
    row = await cur.fetchone()
    await cur.close()
    return _order(row) if row else None


async def place_order(
    artwork_id: int,
    buyer_name: str,
    buyer_email: Optional[str],
    phone: str,
    address_line1: str,
    address_line2: Optional[str],
    postal_code: str,
    payment_method: str,
    quantity,
) -> Union[models.OrderConfirmation, models.Invalid, models.NotFound]:
    """
    Cash-on-delivery checkout for a single artwork.

    All field errors are collected. A missing artwork wins over field errors.
    On invalid input nothing is written and the total for the requested quantity
    is returned with the errors. Otherwise a pending order is stored with the
    artwork's current title and price.
    """
    errors, qty = pure.validate_checkout(
        buyer_name, phone, address_line1, postal_code, payment_method, quantity
    )

    async with connect() as conn:
        artwork = await _orderable_artwork(conn, artwork_id)
        if artwork is None:
            return models.NotFound("artwork", artwork_id)

        if errors:
            _logger.debug(f"Checkout for artwork {artwork_id} rejected: {len(errors)} errors")
            return _invalid(errors, total=artwork.price * qty)

        buyer_email = (buyer_email or "").strip() or None
        cur = await conn.execute(
            """
            INSERT INTO orders(artwork_id, buyer_name, buyer_email, phone, address,
                               payment_method, quantity, status, unit_price, artwork_title)
            VALUES (?, ?, ?, ?, ?, ?, ?, 'pending', ?, ?);
            """,
            (
                artwork.id,
                buyer_name.strip(),
                buyer_email,
                phone.strip(),
                pure.compose_address(address_line1, address_line2, postal_code),
                payment_method,
                qty,
                artwork.price,
                artwork.title,
            ),
        )
        order_id = cur.lastrowid
        await cur.close()
        await conn.commit()
        order = await _get_order(conn, order_id)

    _logger.info(
        f"Order {order.id} placed: artwork {artwork.id} x{qty} ({payment_method})"
    )
    return models.OrderConfirmation(order=order, artwork=artwork)


async def get_order(order_id: int) -> Optional[models.Order]:
    async with connect() as conn:
        return await _get_order(conn, order_id)


@admin_only
async def set_order_status(
    session: models.Session, order_id: int, new_status: str
) -> Union[models.Order, models.NotFound, models.Invalid]:
    """
    Move an order to `new_status`. Which moves are allowed is decided by
    pure.status_transition_allowed alone. No history is kept.
    """
    if new_status not in models.ORDER_STATUSES:
        return _invalid([models.FieldError("status", f"Unknown status {new_status!r}")])

    async with connect() as conn:
        order = await _get_order(conn, order_id)
        if order is None:
            return models.NotFound("order", order_id)
        if not pure.status_transition_allowed(order.status, new_status):
            return _invalid(
                [
                    models.FieldError(
                        "status", f"Cannot move from {order.status} to {new_status}"
                    )
                ]
            )
        await conn.execute(
            "UPDATE orders SET status = ? WHERE id = ?;", (new_status, order_id)
        )
        await conn.commit()
        updated = await _get_order(conn, order_id)

    _logger.info(f"Order {order_id}: {order.status} -> {new_status}")
    return updated


async def _orders_with_artworks(
    where: str = "", params: tuple = ()
) -> List[Tuple[models.Order, Optional[models.Artwork]]]:
    order_cols = ", ".join(f"o.{c.strip()}" for c in ORDER_COLUMNS.split(","))
    art_cols = ", ".join(f"a.{c.strip()}" for c in ARTWORK_COLUMNS.split(","))
    async with connect() as conn:
        cur = await conn.execute(
            f"""
            SELECT {order_cols}, {art_cols}
            FROM orders o
            LEFT JOIN artworks a ON o.artwork_id = a.id
            {where}
            ORDER BY o.created_at DESC, o.id DESC;
            """,
            params,
        )
        rows = await cur.fetchall()
        await cur.close()

    n = len(ORDER_COLUMNS.split(","))
    result = []
    for row in rows:
        values = tuple(row)
        art_values = values[n:]
        artwork = _artwork(art_values) if art_values[0] is not None else None
        result.append((_order(values[:n]), artwork))
    return result


@admin_only
async def list_orders(
    session: models.Session,
) -> List[Tuple[models.Order, Optional[models.Artwork]]]:
    """
    Every order, newest first, with its artwork; the artwork is None once deleted.
    """
    return await _orders_with_artworks()


async def list_orders_for_buyer(
    email: str,
) -> List[Tuple[models.Order, Optional[models.Artwork]]]:
    """Orders placed with this buyer email, newest first."""
    return await _orders_with_artworks("WHERE o.buyer_email = ?", (email,))


# ---------------------------
# Support
# ---------------------------


async def create_support_message(
    session: models.Session, subject: str, message: str
) -> Union[models.SupportMessage, models.Invalid]:
    """Record a help request from the signed-in user."""
    errors = pure.validate_support_message(subject, message)
    if errors:
        return _invalid(errors)

    async with connect() as conn:
        cur = await conn.execute(
            """
            INSERT INTO support_messages(user_id, user_name, user_email, subject, message)
            VALUES (?, ?, ?, ?, ?);
            """,
            (
                session.id,
                session.name or session.email,
                session.email,
                subject.strip(),
                message.strip(),
            ),
        )
        message_id = cur.lastrowid
        await cur.close()
        await conn.commit()
        cur = await conn.execute(
            f"SELECT {SUPPORT_COLUMNS} FROM support_messages WHERE id = ?;",
            (message_id,),
        )
        row = await cur.fetchone()
        await cur.close()
    _logger.info(f"Support message {message_id} from user {session.id}")
    return _support_message(row)


@admin_only
async def list_support_messages(
    session: models.Session,
) -> List[models.SupportMessage]:
    async with connect() as conn:
        cur = await conn.execute(
            f"SELECT {SUPPORT_COLUMNS} FROM support_messages ORDER BY created_at DESC, id DESC;"
        )
        rows = await cur.fetchall()
        await cur.close()
    return [_support_message(row) for row in rows]
