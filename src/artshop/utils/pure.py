import math
import re
from typing import List, Literal, Optional, Tuple

from artshop.db.models import ORDER_STATUSES, PAYMENT_METHODS, FieldError

MIN_QTY, MAX_QTY = 1, 5
MAX_COMMENT_LENGTH = 500
MIN_PASSWORD_LENGTH = 6


def generate_markdown_table(
    headers: Optional[List[str]],
    rows: List[List[str]],
    aligns: Optional[List[Literal["l", "c", "r"]]] = None,
) -> str:
    """
    Generate a Markdown table.

    Args:
        headers: List of column headers, or None to use first row as headers.
        rows: List of rows, each a list of values (converted with str()).
        aligns: List of alignments ('l', 'c', 'r') for each column.
                Defaults to all center ('c').

    Returns:
        str: Markdown formatted table.
    """
    if not rows:
        return ""

    if not headers:
        headers, rows = rows[0], rows[1:]

    # pipes inside cells would split the column
    def cell(val) -> str:
        return str(val).replace("|", "\\|").replace("\n", " ")

    headers = [cell(h) for h in headers]
    rows = [[cell(v) for v in row] for row in rows]

    num_cols = len(headers)
    if aligns is None:
        aligns = ["c"] * num_cols
    elif len(aligns) != num_cols:
        raise ValueError("Length of aligns must match number of headers.")

    align_map = {
        "l": ":---",
        "c": ":---:",
        "r": "---:",
    }

    header_line = "| " + " | ".join(headers) + " |"
    align_line = "| " + " | ".join(align_map[a] for a in aligns) + " |"
    row_lines = ["| " + " | ".join(row) + " |" for row in rows]

    return "\n".join([header_line, align_line, *row_lines])


def format_price(amount: float) -> str:
    return f"${amount:,.2f}"


def _trimmed(val: Optional[str]) -> str:
    return (val or "").strip()


# ---------------------------
# Catalog
# ---------------------------


def escape_like(phrase: str) -> str:
    """Escape LIKE wildcards so they match literally (use with ESCAPE '\\')."""
    return (
        phrase.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    )


def parse_price(raw) -> Optional[float]:
    """Finite positive price, or None when `raw` is missing or not a number."""
    try:
        price = float(str(raw).strip())
    except (TypeError, ValueError):
        return None
    if not math.isfinite(price) or price <= 0:
        return None
    return price


def validate_artwork_fields(title: Optional[str], price) -> List[FieldError]:
    errors: List[FieldError] = []
    if not _trimmed(title):
        errors.append(FieldError("title", "Title is required"))
    if price is None or not str(price).strip():
        errors.append(FieldError("price", "Price is required"))
    elif parse_price(price) is None:
        errors.append(FieldError("price", "Price must be a positive number"))
    return errors


# ---------------------------
# Identity
# ---------------------------


def validate_registration(email: Optional[str], password: Optional[str]) -> List[FieldError]:
    errors: List[FieldError] = []
    if not _trimmed(email):
        errors.append(FieldError("email", "Email is required"))
    if not password:
        errors.append(FieldError("password", "Password is required"))
    elif len(password) < MIN_PASSWORD_LENGTH:
        errors.append(
            FieldError(
                "password",
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
            )
        )
    return errors


def display_name(name: Optional[str], email: str) -> str:
    """Name shown next to user content: the profile name or the email's local part."""
    return _trimmed(name) or email.split("@")[0]


# ---------------------------
# Social
# ---------------------------


def validate_comment(text: Optional[str]) -> Tuple[str, List[FieldError]]:
    comment = _trimmed(text)
    if not comment:
        return comment, [FieldError("comment", "Comment cannot be empty")]
    if len(comment) > MAX_COMMENT_LENGTH:
        return comment, [
            FieldError(
                "comment",
                f"Comment is too long (max {MAX_COMMENT_LENGTH} characters)",
            )
        ]
    return comment, []


def validate_support_message(
    subject: Optional[str], message: Optional[str]
) -> List[FieldError]:
    errors: List[FieldError] = []
    if len(_trimmed(subject)) < 3:
        errors.append(
            FieldError("subject", "Subject must be at least 3 characters long")
        )
    if len(_trimmed(message)) < 10:
        errors.append(
            FieldError("message", "Message must be at least 10 characters long")
        )
    return errors


# ---------------------------
# Checkout
# ---------------------------


_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


def parse_quantity(raw) -> int:
    """
    Leading integer of the submitted quantity, so "2.5" and "3 pcs" read as 2 and 3.
    Missing input or input without a leading integer counts as 1.
    """
    match = _LEADING_INT.match("" if raw is None else str(raw))
    return int(match.group(1)) if match else 1


def validate_checkout(
    buyer_name: Optional[str],
    phone: Optional[str],
    address_line1: Optional[str],
    postal_code: Optional[str],
    payment_method: Optional[str],
    quantity,
) -> Tuple[List[FieldError], int]:
    """
    Check every checkout field independently and collect all failures.
    Returns (errors, parsed quantity).
    """
    errors: List[FieldError] = []
    if len(_trimmed(buyer_name)) < 2:
        errors.append(FieldError("buyer_name", "Full name is required"))
    if len(_trimmed(phone)) < 10:
        errors.append(
            FieldError("phone", "Valid phone number is required (minimum 10 digits)")
        )
    if len(_trimmed(address_line1)) < 5:
        errors.append(FieldError("address_line1", "Address line 1 is required"))
    if len(_trimmed(postal_code)) < 6:
        errors.append(
            FieldError("postal_code", "Valid pin code is required (6 digits)")
        )
    if payment_method not in PAYMENT_METHODS:
        errors.append(FieldError("payment_method", "Invalid payment method"))

    qty = parse_quantity(quantity)
    if not MIN_QTY <= qty <= MAX_QTY:
        errors.append(
            FieldError("quantity", f"Quantity must be between {MIN_QTY} and {MAX_QTY}")
        )
    return errors, qty


def compose_address(
    address_line1: str, address_line2: Optional[str], postal_code: str
) -> str:
    """`line1[, line2], Pin: <postal>` as stored on the order."""
    parts = [address_line1.strip()]
    if _trimmed(address_line2):
        parts.append(address_line2.strip())
    return f"{', '.join(parts)}, Pin: {postal_code.strip()}"


def status_transition_allowed(current: str, new: str) -> bool:
    """
    Order status policy. Any status may follow any other (including going
    backwards); only values outside ORDER_STATUSES are refused.
    """
    return current in ORDER_STATUSES and new in ORDER_STATUSES


def order_detail_markdown(order, artwork=None) -> str:
    """Markdown block describing one order; `artwork` is None once it was deleted."""
    header = (
        f"### Order #{order.id}\n"
        f"Date: {order.created_at}  \n"
        f"Status: **{order.status}**  \n"
        f"Payment: {'Cash on Delivery' if order.payment_method == 'cod' else 'Online'}\n\n"
    )
    title = order.artwork_title
    if artwork is None:
        title += " (no longer listed)"
    table = generate_markdown_table(
        ["Artwork", "Qty", "Unit Price", "Total"],
        [[title, order.quantity, format_price(order.unit_price), format_price(order.total)]],
        ["l", "r", "r", "r"],
    )
    ship_to = (
        f"\n\n**Ship To:** {order.buyer_name}, {order.address}  \n"
        f"**Phone:** {order.phone}"
    )
    if order.buyer_email:
        ship_to += f"  \n**Email:** {order.buyer_email}"
    return header + table + ship_to
