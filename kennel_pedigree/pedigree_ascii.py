from __future__ import annotations

from typing import List, Optional

from .models import ChartOptions, ParentType, Sex
from .pedigree_layout import GenerationColumns, PedigreeSlot, SlotState, node_labels

_EMPTY_SYMBOLS = {
    SlotState.UNKNOWN: "?",
    SlotState.NOT_FOUND: "?",
    SlotState.CYCLE: "?",
    SlotState.ERROR: "!",
    SlotState.PENDING: ".",
    SlotState.TRUNCATED: "+",
}


def _symbol(slot: PedigreeSlot) -> str:
    if slot.is_empty:
        return _EMPTY_SYMBOLS.get(slot.state, "?")

    if slot.node.sex is Sex.MALE:
        return "X"
    if slot.node.sex is Sex.FEMALE:
        return "O"

    # Sex missing: fall back to pedigree role (sire/dam)
    if slot.parent_type is ParentType.SIRE:
        return "X"
    if slot.parent_type is ParentType.DAM:
        return "O"
    return "*"


def render_pedigree_ascii(columns: GenerationColumns, *, x_step: int = 4) -> str:
    """
    Sideways pedigree. Left -> right is deeper generations.

    Symbols:
      X = male (or sire-role fallback)
      O = female (or dam-role fallback)
      * = root of unknown sex
      ? = unknown / not found ancestor (only drawn at the edge)
      . = ancestor still loading
      ! = ancestor failed to load
      + = ancestry exists beyond the displayed / fetched depth
    """
    if x_step < 3:
        raise ValueError("x_step must be >= 3")
    if not columns.columns:
        return ""

    last = len(columns.columns) - 1

    # --- layout: compute y positions with a simple recursive tidy layout ---
    next_leaf_y = 0
    pos: dict[tuple[int, int], tuple[int, int]] = {}   # (generation, position) -> (x, y)

    def layout(g: int, i: int) -> int:
        nonlocal next_leaf_y
        slot = columns.slot(g, i)

        # Empty slots and the last column are leaves
        if slot.node is None or g == last:
            y = next_leaf_y
            next_leaf_y += 2
        else:
            fy = layout(g + 1, 2 * i)
            my = layout(g + 1, 2 * i + 1)
            y = (fy + my) // 2

        pos[(g, i)] = (g * x_step, y)
        return y

    layout(0, 0)

    max_x = max(x for x, _ in pos.values())
    max_y = max(y for _, y in pos.values())

    # +2 columns so the has_more marker fits to the right of a node symbol
    canvas = [[" " for _ in range(max_x + 3)] for _ in range(max_y + 1)]

    def put(x: int, y: int, ch: str) -> None:
        if 0 <= y < len(canvas) and 0 <= x < len(canvas[0]):
            canvas[y][x] = ch

    def draw_h(x1: int, x2: int, y: int) -> None:
        for x in range(min(x1, x2), max(x1, x2) + 1):
            if canvas[y][x] == " ":
                canvas[y][x] = "-"

    def draw_v(x: int, y1: int, y2: int) -> None:
        for yy in range(min(y1, y2), max(y1, y2) + 1):
            if canvas[yy][x] == " ":
                canvas[yy][x] = "|"

    # Edges first, symbols on top
    for (g, i), (x0, y0) in pos.items():
        if (g + 1, 2 * i) not in pos:
            continue
        jx = x0 + 2  # join column
        for pi in (2 * i, 2 * i + 1):
            px, py = pos[(g + 1, pi)]
            draw_h(jx, px - 1, py)
            draw_v(jx, y0, py)

    for (g, i), (x, y) in pos.items():
        slot = columns.slot(g, i)
        put(x, y, _symbol(slot))
        if slot.has_more:
            put(x + 1, y, "+")

    lines = ["".join(row).rstrip() for row in canvas]
    while lines and lines[-1] == "":
        lines.pop()
    return "\n".join(lines)


def render_pedigree_text(columns: GenerationColumns, options: Optional[ChartOptions] = None) -> str:
    """
    Generation-by-generation listing of the horizontal layout.

    Slots above an empty slot are skipped; the empty slot itself is listed
    with its placeholder state.
    """
    options = options or ChartOptions()
    out: List[str] = []

    for g, column in enumerate(columns):
        out.append(f"Generation {g}:")
        for slot in column:
            if g > 0:
                child = columns.slot(g - 1, slot.position // 2)
                if child.node is None:
                    continue
            role = slot.parent_type.label if slot.parent_type else "Dog"
            if slot.is_empty:
                out.append(f"  [{slot.position}] {role}: ({slot.state.value})")
                continue
            text = " / ".join(node_labels(slot.node, options))
            marker = " +" if slot.has_more else ""
            out.append(f"  [{slot.position}] {role}: {text}{marker}")

    return "\n".join(out)
