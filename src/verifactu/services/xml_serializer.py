from __future__ import annotations

from collections.abc import Mapping

from lxml import etree

from verifactu.config import SUM1_NS, SUM_NS
from verifactu.services.exceptions import ValidationError

ROOT_TAG = "RegFactuSistemaFacturacion"

# Depth (root = 0) from which elements belong to the inner namespace:
# Cabecera/RegistroFactura are sum:, everything inside them is sum1:.
INNER_DEPTH = 2


def _sub(parent: etree._Element, ns: str, tag: str, text: str | None = None) -> etree._Element:
    el = etree.SubElement(parent, f"{{{ns}}}{tag}")
    if text is not None:
        try:
            el.text = text
        except ValueError as exc:
            raise ValidationError(f"{tag}: value is not XML compatible") from exc
    return el


def _emit(
    parent: etree._Element,
    tree: Mapping[str, object],
    depth: int,
    outer_ns: str,
    inner_ns: str,
    inner_depth: int,
) -> None:
    ns = outer_ns if depth < inner_depth else inner_ns
    for tag, value in tree.items():
        items = value if isinstance(value, list) else [value]
        for item in items:
            if isinstance(item, Mapping):
                el = _sub(parent, ns, tag)
                _emit(el, item, depth + 1, outer_ns, inner_ns, inner_depth)
            elif item is not None:
                _sub(parent, ns, tag, str(item))


def serialize(
    tree: Mapping[str, object],
    root_tag: str = ROOT_TAG,
    *,
    outer_ns: str = SUM_NS,
    inner_ns: str = SUM1_NS,
    inner_depth: int = INNER_DEPTH,
) -> etree._Element:
    """Render a composed tree depth-first into namespaced lxml elements.

    Dict values become subtrees, list values become one sibling element per
    item (input order kept), anything else becomes escaped text.
    """
    root = etree.Element(
        f"{{{outer_ns}}}{root_tag}",
        nsmap={"sum": outer_ns, "sum1": inner_ns},
    )
    _emit(root, tree, 1, outer_ns, inner_ns, inner_depth)
    return root


def to_bytes(element: etree._Element) -> bytes:
    return etree.tostring(element, xml_declaration=True, encoding="utf-8")
