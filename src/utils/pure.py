# side-effect free formatting used by the screens
from typing import Any, Dict, Iterable, List, Literal, Optional, Sequence

_ALIGN = {"l": ":---", "c": ":---:", "r": "---:"}


def _cell(value: Any) -> str:
    if value is None:
        return ""
    # pipes would split the cell
    return str(value).replace("|", "\\|").replace("\n", " ")


def markdown_table(
    headers: Sequence[str],
    rows: Iterable[Sequence[Any]],
    aligns: Optional[Sequence[Literal["l", "c", "r"]]] = None,
) -> str:
    """
    Render rows as a Markdown table.

    Args:
        headers: column titles.
        rows: one sequence per row; None renders as an empty cell.
        aligns: 'l', 'c' or 'r' per column, left-aligned by default.

    Returns "" when there are no rows.
    """
    rows = [list(row) for row in rows]
    if not rows:
        return ""
    aligns = list(aligns) if aligns is not None else ["l"] * len(headers)
    if len(aligns) != len(headers):
        raise ValueError("Length of aligns must match number of headers.")

    lines = [
        "| " + " | ".join(_cell(h) for h in headers) + " |",
        "| " + " | ".join(_ALIGN[a] for a in aligns) + " |",
    ]
    lines.extend("| " + " | ".join(_cell(c) for c in row) + " |" for row in rows)
    return "\n".join(lines)


def money(amount: Optional[float], currency: str = "CUP") -> str:
    if amount is None:
        return "-"
    return f"{amount:,.2f} {currency}"


def product_markdown(product: Dict[str, Any], movements: List[Dict[str, Any]]) -> str:
    """Detail view of a product followed by its most recent stock movements."""
    detail = markdown_table(
        ["Attribute", "Value"],
        [
            ["ID", product["id"]],
            ["Category", product.get("category_name")],
            ["Subcategory", product.get("subcategory_name")],
            ["Stock", f"{product['stock']} ({product.get('stock_status', '?')})"],
            ["Price USD", money(product["price_usd"], "USD")],
            ["Price CUP", money(product["price_cup"])],
            ["Extractions", product["extractions"]],
            ["Defectives", product["defectives"]],
            ["Barcode", product.get("barcode")],
            ["Supplier", product.get("supplier")],
            ["Updated", product.get("updated_at")],
        ],
    )
    text = f"### {product['name']}\n\n{product.get('description') or ''}\n\n{detail}\n"

    recent = movements[-10:][::-1]
    if recent:
        text += "\n#### Recent stock movements\n\n" + markdown_table(
            ["When", "Type", "Qty", "Before", "After", "Reason"],
            [
                [
                    m["created_at"],
                    m["type"],
                    m["quantity"],
                    m["stock_before"],
                    m["stock_after"],
                    m["reason"],
                ]
                for m in recent
            ],
            ["l", "l", "r", "r", "r", "l"],
        )
    return text
